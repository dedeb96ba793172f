"""Entitlement registry: mint, transfer and fee withdrawal as atomic calls."""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional

from .authorizer import (
    SignatureAuthorizer,
    SignatureLike,
    mint_message_hash,
    normalize_address,
    require_uint256,
)
from .catalog import ContentRecord
from .currency import CurrencyError, SettlementCurrency
from .errors import BadAuthorization, InvalidArgument, PaymentFailed, Unauthorized
from .events import URI, ApprovalForAll, EventJournal, FeeWithdrawn, NewAccess, TransferSingle
from .royalty import royalty_owed
from .store import RegistryState, StateStore
from .validity import Clock, SystemClock

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "0" * 40


@dataclass
class MintResult:
    content_id: int
    holder: str
    service_provider: str
    nonce: int
    total_supply: int
    quantity: int
    expires_at: int
    fee_paid: int


@dataclass
class TransferResult:
    operator: str
    sender: str
    recipient: str
    content_id: int
    amount: int
    validity_transferred: int
    royalty_paid: int


@dataclass
class _Call:
    state: RegistryState
    compensations: List[Callable[[], Any]] = field(default_factory=list)
    irreversible: bool = False


class EntitlementRegistry:
    """Owns the content, holding and fee tables and serializes every mutation."""

    def __init__(
        self,
        registry_address: str,
        currency: SettlementCurrency,
        *,
        store: Optional[StateStore] = None,
        journal: Optional[EventJournal] = None,
        clock: Optional[Clock] = None,
        authorizer: Optional[SignatureAuthorizer] = None,
    ) -> None:
        self.address = normalize_address(registry_address, name="registry_address")
        self.currency = currency
        self.store = store or StateStore()
        self.journal = journal or EventJournal()
        self.clock = clock or SystemClock()
        self.authorizer = authorizer or SignatureAuthorizer()
        self._lock = threading.RLock()
        self.state = self.store.load()
        self._check_custodian()

    def _check_custodian(self) -> None:
        try:
            custodian = self.currency.custodian
        except CurrencyError as exc:
            logger.warning("Settlement currency has no custodian yet: %s", exc)
            return
        if custodian.lower() != self.address:
            raise ValueError(
                f"Currency custody address {custodian} does not match registry address {self.address}"
            )

    # ------------------------------------------------------------------
    # Transaction helpers
    # ------------------------------------------------------------------
    @contextmanager
    def _transaction(self) -> Iterator[_Call]:
        saved = self.state.snapshot()
        call = _Call(state=self.state)
        try:
            yield call
            self.store.persist(self.state)
        except Exception:
            if call.irreversible:
                logger.error("Registry call failed after an irreversible payout; keeping in-memory state")
                raise
            for compensate in reversed(call.compensations):
                try:
                    compensate()
                except CurrencyError as exc:
                    logger.error("Compensating currency movement failed: %s", exc)
            self.state = RegistryState.from_snapshot(saved)
            raise

    def _pull(self, call: _Call, payer: str, amount: int, *, purpose: str) -> None:
        if amount <= 0:
            return
        try:
            self.currency.transfer_from(payer, self.address, amount)
        except CurrencyError as exc:
            logger.warning("Payment of %s for %s from %s failed: %s", amount, purpose, payer, exc)
            raise PaymentFailed(f"Unable to collect {amount} for {purpose} from {payer}: {exc}") from exc
        call.compensations.append(lambda: self.currency.refund(payer, amount))

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def mint(
        self,
        content_id: int,
        unit_validity: int,
        holder: str,
        royalty_rate: int,
        unit_fee: int,
        service_provider: str,
        signature: SignatureLike,
        name: str = "",
    ) -> MintResult:
        require_uint256(content_id, name="content_id")
        require_uint256(unit_validity, name="unit_validity")
        require_uint256(royalty_rate, name="royalty_rate")
        require_uint256(unit_fee, name="unit_fee")
        if unit_validity == 0:
            raise InvalidArgument("unit_validity must be positive")
        holder = normalize_address(holder, name="holder")
        provider = normalize_address(service_provider, name="service_provider")

        with self._lock:
            now = self.clock.now()
            with self._transaction() as call:
                catalog = call.state.catalog
                record = catalog.register_or_get(
                    content_id,
                    provider,
                    unit_fee,
                    royalty_rate,
                    unit_validity,
                    name,
                )
                nonce = catalog.next_supply_index(content_id)
                message = mint_message_hash(self.address, content_id, nonce)
                if not self.authorizer.verify(message, signature, record.service_provider):
                    logger.warning(
                        "Rejected mint of content %s for %s: signature does not match provider %s at nonce %s",
                        content_id,
                        holder,
                        record.service_provider,
                        nonce,
                    )
                    raise BadAuthorization(
                        f"Signature is not a valid authorization by {record.service_provider} "
                        f"for content {content_id} at supply {nonce}"
                    )

                self._pull(call, holder, record.unit_fee, purpose=f"mint of content {content_id}")

                holding = call.state.holdings.mint_into(holder, content_id, 1, record.unit_validity, now)
                total_supply = catalog.increment_supply(content_id)
                call.state.vault.credit(record.service_provider, record.unit_fee)

            self.journal.emit(
                NewAccess(
                    content_id=content_id,
                    service_provider=record.service_provider,
                    unit_validity=record.unit_validity,
                    unit_fee=record.unit_fee,
                    holder=holder,
                    royalty_rate=record.royalty_rate,
                    name=record.name,
                )
            )

        logger.info(
            "Minted content %s to %s (nonce=%s supply=%s expires_at=%s)",
            content_id,
            holder,
            nonce,
            total_supply,
            holding.expires_at,
        )
        return MintResult(
            content_id=content_id,
            holder=holder,
            service_provider=record.service_provider,
            nonce=nonce,
            total_supply=total_supply,
            quantity=holding.quantity,
            expires_at=holding.expires_at,
            fee_paid=record.unit_fee,
        )

    def transfer(
        self,
        sender: str,
        recipient: str,
        content_id: int,
        amount: int,
        *,
        operator: Optional[str] = None,
    ) -> TransferResult:
        require_uint256(content_id, name="content_id")
        require_uint256(amount, name="amount")
        if amount == 0:
            raise InvalidArgument("amount must be positive")
        sender = normalize_address(sender, name="sender")
        recipient = normalize_address(recipient, name="recipient")
        if recipient == ZERO_ADDRESS:
            raise InvalidArgument("recipient must not be the zero address")
        operator = normalize_address(operator, name="operator") if operator else sender

        with self._lock:
            now = self.clock.now()
            if not self.state.approvals.may_move(sender, operator):
                logger.warning(
                    "Rejected transfer of content %s from %s: operator %s is not approved",
                    content_id,
                    sender,
                    operator,
                )
                raise Unauthorized(f"{operator} is not approved to move holdings of {sender}")
            with self._transaction() as call:
                left = call.state.holdings.quote_transfer(sender, content_id, amount, now)
                record = call.state.catalog.require(content_id)
                fee = royalty_owed(record.royalty_rate, record.unit_fee, left, record.unit_validity)

                self._pull(call, sender, fee, purpose=f"royalty on content {content_id}")

                call.state.holdings.transfer(sender, recipient, content_id, amount, now)
                if fee:
                    call.state.vault.credit(record.service_provider, fee)

            self.journal.emit(
                TransferSingle(
                    operator=operator,
                    sender=sender,
                    recipient=recipient,
                    content_id=content_id,
                    amount=amount,
                    royalty=fee,
                )
            )

        logger.info(
            "Transferred %s of content %s from %s to %s (validity=%s royalty=%s)",
            amount,
            content_id,
            sender,
            recipient,
            left,
            fee,
        )
        return TransferResult(
            operator=operator,
            sender=sender,
            recipient=recipient,
            content_id=content_id,
            amount=amount,
            validity_transferred=left,
            royalty_paid=fee,
        )

    def withdraw_fee(self, service_provider: str) -> int:
        provider = normalize_address(service_provider, name="service_provider")

        def pay_out(value: int) -> None:
            self.currency.transfer(provider, value)
            call.irreversible = True

        with self._lock:
            with self._transaction() as call:
                amount = call.state.vault.withdraw(provider, pay_out)
            self.journal.emit(FeeWithdrawn(service_provider=provider, amount=amount))

        logger.info("Withdrew %s in fees for %s", amount, provider)
        return amount

    def set_approval_for_all(self, owner: str, operator: str, approved: bool) -> None:
        owner = normalize_address(owner, name="owner")
        operator = normalize_address(operator, name="operator")
        if owner == operator:
            raise InvalidArgument("an owner cannot change its own operator approval")
        with self._lock:
            with self._transaction() as call:
                call.state.approvals.set_approval(owner, operator, approved)
            self.journal.emit(ApprovalForAll(owner=owner, operator=operator, approved=approved))
        logger.info("Operator %s %s for %s", operator, "approved" if approved else "revoked", owner)

    def set_uri(self, content_id: int, caller: str, new_uri: str) -> ContentRecord:
        require_uint256(content_id, name="content_id")
        caller = normalize_address(caller, name="caller")
        with self._lock:
            with self._transaction() as call:
                record = call.state.catalog.set_uri(content_id, caller, new_uri)
            self.journal.emit(URI(value=new_uri, content_id=content_id))
        logger.info("Updated uri of content %s", content_id)
        return record

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def check_validity_left(self, holder: str, content_id: int) -> int:
        holder = normalize_address(holder, name="holder")
        with self._lock:
            return self.state.holdings.remaining(holder, content_id, self.clock.now())

    def check_net_royalty(self, holder: str, content_id: int) -> int:
        holder = normalize_address(holder, name="holder")
        with self._lock:
            record = self.state.catalog.get(content_id)
            if record is None:
                return 0
            left = self.state.holdings.remaining(holder, content_id, self.clock.now())
            return royalty_owed(record.royalty_rate, record.unit_fee, left, record.unit_validity)

    def uri(self, content_id: int) -> str:
        with self._lock:
            return self.state.catalog.uri(content_id)

    def total_supply(self, content_id: int) -> int:
        with self._lock:
            return self.state.catalog.next_supply_index(content_id)

    def get_next_content_id_count(self, content_id: int) -> int:
        return self.total_supply(content_id)

    def balance_of(self, holder: str, content_id: int) -> int:
        holder = normalize_address(holder, name="holder")
        with self._lock:
            return self.state.holdings.balance_of(holder, content_id)

    def is_approved_for_all(self, owner: str, operator: str) -> bool:
        owner = normalize_address(owner, name="owner")
        operator = normalize_address(operator, name="operator")
        with self._lock:
            return self.state.approvals.is_approved(owner, operator)

    def fee_balance(self, service_provider: str) -> int:
        provider = normalize_address(service_provider, name="service_provider")
        with self._lock:
            return self.state.vault.balance(provider)

    def content(self, content_id: int) -> ContentRecord:
        with self._lock:
            return self.state.catalog.require(content_id)

    def holding(self, holder: str, content_id: int) -> Dict[str, int]:
        holder = normalize_address(holder, name="holder")
        with self._lock:
            now = self.clock.now()
            current = self.state.holdings.get(holder, content_id)
            left = current.validity_left(now)
            record = self.state.catalog.get(content_id)
            royalty = (
                royalty_owed(record.royalty_rate, record.unit_fee, left, record.unit_validity)
                if record
                else 0
            )
            return {
                "quantity": current.quantity,
                "expires_at": current.expires_at if current.quantity else 0,
                "validity_left": left,
                "net_royalty": royalty,
            }


__all__ = [
    "EntitlementRegistry",
    "MintResult",
    "TransferResult",
]
