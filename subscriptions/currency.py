"""Settlement currency collaborators.

The registry never mints or burns the settlement currency; it only pulls
approved amounts into its custody address and pays accrued fees out of it.
Two backends are provided: a JSON-backed token ledger for standalone
deployments and tests, and an ERC-20 contract driven through web3.py.
"""
from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from web3 import Web3
from web3.middleware.proof_of_authority import ExtraDataToPOAMiddleware

from .signer import Signer

logger = logging.getLogger(__name__)


class CurrencyError(RuntimeError):
    """Raised when the settlement currency refuses a movement."""


class SettlementCurrency(Protocol):
    @property
    def custodian(self) -> str: ...

    def transfer_from(self, owner: str, recipient: str, amount: int) -> Optional[str]: ...

    def transfer(self, recipient: str, amount: int) -> Optional[str]: ...

    def refund(self, owner: str, amount: int) -> Optional[str]: ...

    def balance_of(self, account: str) -> int: ...


class LocalCurrency:
    """Fungible balance ledger with ERC-20 style allowances."""

    def __init__(self, custodian: str, path: Optional[Path] = None) -> None:
        self._custodian = custodian.lower()
        self.path = path
        self._lock = threading.RLock()
        self.balances: Dict[str, int] = {}
        self.allowances: Dict[str, Dict[str, int]] = {}
        self._load()

    @property
    def custodian(self) -> str:
        return self._custodian

    def _load(self) -> None:
        if self.path is None:
            return
        if not self.path.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
            return
        with self.path.open("r", encoding="utf-8") as handle:
            raw = json.load(handle)
        self.balances = {key: int(value) for key, value in raw.get("balances", {}).items()}
        self.allowances = {
            owner: {spender: int(value) for spender, value in spenders.items()}
            for owner, spenders in raw.get("allowances", {}).items()
            if isinstance(spenders, dict)
        }

    def _persist(self) -> None:
        if self.path is None:
            return
        tmp_path = self.path.with_suffix(".tmp")
        data = {
            "balances": {key: str(value) for key, value in self.balances.items()},
            "allowances": {
                owner: {spender: str(value) for spender, value in spenders.items()}
                for owner, spenders in self.allowances.items()
            },
        }
        with tmp_path.open("w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2, sort_keys=True)
        tmp_path.replace(self.path)

    def fund(self, account: str, amount: int) -> int:
        if amount < 0:
            raise ValueError("amount must be non-negative")
        with self._lock:
            key = account.lower()
            self.balances[key] = self.balances.get(key, 0) + amount
            self._persist()
            return self.balances[key]

    def approve(self, owner: str, spender: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("amount must be non-negative")
        with self._lock:
            self.allowances.setdefault(owner.lower(), {})[spender.lower()] = amount
            self._persist()

    def allowance(self, owner: str, spender: str) -> int:
        with self._lock:
            return self.allowances.get(owner.lower(), {}).get(spender.lower(), 0)

    def balance_of(self, account: str) -> int:
        with self._lock:
            return self.balances.get(account.lower(), 0)

    def _move(self, sender: str, recipient: str, amount: int) -> None:
        available = self.balances.get(sender, 0)
        if available < amount:
            raise CurrencyError(f"{sender} balance {available} is below {amount}")
        self.balances[sender] = available - amount
        self.balances[recipient] = self.balances.get(recipient, 0) + amount

    def transfer_from(self, owner: str, recipient: str, amount: int) -> Optional[str]:
        if amount < 0:
            raise CurrencyError("amount must be non-negative")
        owner_key = owner.lower()
        with self._lock:
            approved = self.allowances.get(owner_key, {}).get(self._custodian, 0)
            if approved < amount:
                raise CurrencyError(f"{owner_key} approved {approved}, {amount} required")
            self._move(owner_key, recipient.lower(), amount)
            self.allowances.setdefault(owner_key, {})[self._custodian] = approved - amount
            self._persist()
        return None

    def transfer(self, recipient: str, amount: int) -> Optional[str]:
        if amount < 0:
            raise CurrencyError("amount must be non-negative")
        with self._lock:
            self._move(self._custodian, recipient.lower(), amount)
            self._persist()
        return None

    def refund(self, owner: str, amount: int) -> Optional[str]:
        """Undo a `transfer_from` into custody, including the spent allowance."""
        owner_key = owner.lower()
        with self._lock:
            self._move(self._custodian, owner_key, amount)
            spenders = self.allowances.setdefault(owner_key, {})
            spenders[self._custodian] = spenders.get(self._custodian, 0) + amount
            self._persist()
        return None


ERC20_ABI: list[dict[str, Any]] = [
    {
        "inputs": [{"internalType": "address", "name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "address", "name": "owner", "type": "address"},
            {"internalType": "address", "name": "spender", "type": "address"},
        ],
        "name": "allowance",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "address", "name": "to", "type": "address"},
            {"internalType": "uint256", "name": "amount", "type": "uint256"},
        ],
        "name": "transfer",
        "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "address", "name": "from", "type": "address"},
            {"internalType": "address", "name": "to", "type": "address"},
            {"internalType": "uint256", "name": "amount", "type": "uint256"},
        ],
        "name": "transferFrom",
        "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


class Erc20Currency:
    """ERC-20 token moved by the registry's custody signer."""

    def __init__(
        self,
        web3: Web3,
        token_address: str,
        chain_id: int,
        signer: Optional[Signer] = None,
        *,
        dry_run: bool = True,
        receipt_timeout_seconds: int = 120,
    ) -> None:
        self.web3 = web3
        self.chain_id = chain_id
        self.dry_run = dry_run
        self.receipt_timeout_seconds = receipt_timeout_seconds
        self._signer = signer
        self.contract = web3.eth.contract(
            address=Web3.to_checksum_address(token_address),
            abi=ERC20_ABI,
        )

    @classmethod
    def from_rpc(
        cls,
        rpc_url: str,
        token_address: str,
        chain_id: int,
        signer: Optional[Signer] = None,
        **kwargs: Any,
    ) -> "Erc20Currency":
        web3 = Web3(Web3.HTTPProvider(rpc_url))
        # Rollups with Clique-style extraData need the POA middleware
        web3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        return cls(web3, token_address, chain_id, signer, **kwargs)

    @property
    def custodian(self) -> str:
        if self._signer is None:
            raise CurrencyError("ERC-20 currency has no custody signer configured")
        return self._signer.address.lower()

    def balance_of(self, account: str) -> int:
        return int(self.contract.functions.balanceOf(Web3.to_checksum_address(account)).call())

    def allowance(self, owner: str, spender: str) -> int:
        return int(
            self.contract.functions.allowance(
                Web3.to_checksum_address(owner),
                Web3.to_checksum_address(spender),
            ).call()
        )

    def transfer_from(self, owner: str, recipient: str, amount: int) -> Optional[str]:
        # Without a custody signer there is no spender to check allowances against.
        if self._signer is not None:
            approved = self.allowance(owner, self.custodian)
            if approved < amount:
                raise CurrencyError(f"{owner} approved {approved}, {amount} required")
            available = self.balance_of(owner)
            if available < amount:
                raise CurrencyError(f"{owner} balance {available} is below {amount}")
        call = self.contract.functions.transferFrom(
            Web3.to_checksum_address(owner),
            Web3.to_checksum_address(recipient),
            int(amount),
        )
        return self._send(call, description=f"transferFrom {owner} -> {recipient} ({amount})")

    def transfer(self, recipient: str, amount: int) -> Optional[str]:
        if self._signer is not None:
            available = self.balance_of(self.custodian)
            if available < amount:
                raise CurrencyError(f"custody balance {available} is below {amount}")
        call = self.contract.functions.transfer(Web3.to_checksum_address(recipient), int(amount))
        return self._send(call, description=f"transfer -> {recipient} ({amount})")

    def refund(self, owner: str, amount: int) -> Optional[str]:
        # An on-chain allowance can only be raised again by its owner.
        logger.warning("Refunding %s to %s; the spent allowance is not restored", amount, owner)
        return self.transfer(owner, amount)

    def _send(self, call: Any, *, description: str) -> Optional[str]:
        if self._signer is None or self.dry_run:
            logger.info("Dry-run currency movement: would submit %s", description)
            return None

        sender = self._signer.address
        try:
            tx = call.build_transaction(
                {
                    "from": sender,
                    "chainId": self.chain_id,
                    "nonce": self.web3.eth.get_transaction_count(sender, block_identifier="pending"),
                }
            )
            raw_tx = self._signer.sign_transaction(tx)
            tx_hash = self.web3.eth.send_raw_transaction(raw_tx)
        except Exception as exc:
            raise CurrencyError(f"Failed to submit {description}: {exc}") from exc

        tx_hex = tx_hash.hex()
        try:
            receipt = self.web3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.receipt_timeout_seconds
            )
        except Exception as exc:
            raise CurrencyError(f"Timed out waiting for receipt of {tx_hex}: {exc}") from exc

        raw_status = getattr(receipt, "status", None)
        if raw_status is None and isinstance(receipt, dict):
            raw_status = receipt.get("status")
        status = 1 if raw_status is None else int(raw_status)
        if status != 1:
            raise CurrencyError(f"{description} reverted (tx={tx_hex})")
        logger.info("Confirmed %s (tx=%s)", description, tx_hex)
        return tx_hex


__all__ = [
    "CurrencyError",
    "ERC20_ABI",
    "Erc20Currency",
    "LocalCurrency",
    "SettlementCurrency",
]
