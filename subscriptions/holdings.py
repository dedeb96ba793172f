"""Per (holder, content) quantities sharing a single decaying expiry."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from .errors import InsufficientBalance
from .validity import remaining

HoldingKey = Tuple[str, int]


@dataclass(frozen=True)
class Holding:
    quantity: int = 0
    expires_at: int = 0

    @property
    def disposed(self) -> bool:
        return self.quantity == 0

    def validity_left(self, now: int) -> int:
        if self.quantity == 0:
            return 0
        return remaining(self.expires_at, now)


EMPTY_HOLDING = Holding()


class EntitlementLedger:
    def __init__(self, holdings: Optional[Dict[HoldingKey, Holding]] = None) -> None:
        self._holdings: Dict[HoldingKey, Holding] = dict(holdings or {})

    def get(self, holder: str, content_id: int) -> Holding:
        return self._holdings.get((holder.lower(), content_id), EMPTY_HOLDING)

    def balance_of(self, holder: str, content_id: int) -> int:
        return self.get(holder, content_id).quantity

    def remaining(self, holder: str, content_id: int, now: int) -> int:
        return self.get(holder, content_id).validity_left(now)

    def _set(self, holder: str, content_id: int, holding: Holding) -> None:
        key = (holder.lower(), content_id)
        if holding.quantity == 0:
            self._holdings.pop(key, None)
        else:
            self._holdings[key] = holding

    def mint_into(
        self,
        holder: str,
        content_id: int,
        quantity: int,
        granted_validity: int,
        now: int,
    ) -> Holding:
        # Re-minting grants a fresh full window for the whole holding.
        current = self.get(holder, content_id)
        updated = Holding(quantity=current.quantity + quantity, expires_at=now + granted_validity)
        self._set(holder, content_id, updated)
        return updated

    def quote_transfer(self, sender: str, content_id: int, amount: int, now: int) -> int:
        """Validate a transfer without applying it; returns the sender's remaining validity."""
        holding = self.get(sender, content_id)
        if holding.quantity < amount:
            raise InsufficientBalance(
                f"{sender} holds {holding.quantity} of content {content_id}, cannot move {amount}"
            )
        return holding.validity_left(now)

    def transfer(
        self,
        sender: str,
        recipient: str,
        content_id: int,
        amount: int,
        now: int,
    ) -> int:
        left = self.quote_transfer(sender, content_id, amount, now)
        source = self.get(sender, content_id)
        self._set(
            sender,
            content_id,
            Holding(quantity=source.quantity - amount, expires_at=source.expires_at),
        )
        target = self.get(recipient, content_id)
        self._set(
            recipient,
            content_id,
            Holding(quantity=target.quantity + amount, expires_at=now + left),
        )
        return left

    def items(self) -> Iterable[Tuple[HoldingKey, Holding]]:
        return list(self._holdings.items())

    def snapshot(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        for (holder, content_id), holding in self._holdings.items():
            data.setdefault(holder, {})[str(content_id)] = {
                "quantity": str(holding.quantity),
                "expires_at": holding.expires_at,
            }
        return data

    @classmethod
    def from_snapshot(cls, raw: Dict[str, Dict[str, Dict[str, Any]]]) -> "EntitlementLedger":
        holdings: Dict[HoldingKey, Holding] = {}
        for holder, per_content in raw.items():
            if not isinstance(per_content, dict):
                continue
            for content_id, value in per_content.items():
                if not isinstance(value, dict):
                    continue
                holding = Holding(
                    quantity=int(value.get("quantity", 0)),
                    expires_at=int(value.get("expires_at", 0)),
                )
                if holding.quantity:
                    holdings[(holder.lower(), int(content_id))] = holding
        return cls(holdings)


class OperatorApprovals:
    """Operators an owner has allowed to move all of its holdings."""

    def __init__(self, approvals: Optional[Dict[str, Set[str]]] = None) -> None:
        self._approvals: Dict[str, Set[str]] = {
            owner.lower(): {operator.lower() for operator in operators}
            for owner, operators in (approvals or {}).items()
        }

    def set_approval(self, owner: str, operator: str, approved: bool) -> None:
        owner, operator = owner.lower(), operator.lower()
        operators = self._approvals.setdefault(owner, set())
        if approved:
            operators.add(operator)
        else:
            operators.discard(operator)
            if not operators:
                del self._approvals[owner]

    def is_approved(self, owner: str, operator: str) -> bool:
        return operator.lower() in self._approvals.get(owner.lower(), set())

    def may_move(self, owner: str, operator: str) -> bool:
        return owner.lower() == operator.lower() or self.is_approved(owner, operator)

    def snapshot(self) -> Dict[str, List[str]]:
        return {owner: sorted(operators) for owner, operators in self._approvals.items() if operators}

    @classmethod
    def from_snapshot(cls, raw: Dict[str, List[str]]) -> "OperatorApprovals":
        return cls({owner: set(operators) for owner, operators in raw.items() if isinstance(operators, list)})


__all__ = ["EMPTY_HOLDING", "EntitlementLedger", "Holding", "OperatorApprovals"]
