"""Withdrawable fee balances owed to service providers."""
from __future__ import annotations

import logging
from typing import Callable, Dict, Optional

from .currency import CurrencyError
from .errors import NothingToWithdraw, TransferFailed

logger = logging.getLogger(__name__)


class FeeVault:
    def __init__(self, balances: Optional[Dict[str, int]] = None) -> None:
        self.balances: Dict[str, int] = {key.lower(): value for key, value in (balances or {}).items()}

    def credit(self, provider: str, amount: int) -> int:
        key = provider.lower()
        new_balance = self.balances.get(key, 0) + amount
        self.balances[key] = new_balance
        return new_balance

    def balance(self, provider: str) -> int:
        return self.balances.get(provider.lower(), 0)

    def withdraw(self, provider: str, pay_out: Callable[[int], object]) -> int:
        """Zero the provider's balance and pay it out; restore it if the payout fails."""
        key = provider.lower()
        amount = self.balances.get(key, 0)
        if amount <= 0:
            raise NothingToWithdraw(f"No withdrawable fees for {key}")
        self.balances[key] = 0
        try:
            pay_out(amount)
        except CurrencyError as exc:
            self.balances[key] = amount
            logger.error("Fee payout of %s to %s failed: %s", amount, key, exc)
            raise TransferFailed(f"Fee payout to {key} failed: {exc}") from exc
        return amount

    def snapshot(self) -> Dict[str, str]:
        return {key: str(value) for key, value in self.balances.items() if value}

    @classmethod
    def from_snapshot(cls, raw: Dict[str, str]) -> "FeeVault":
        return cls({key: int(value) for key, value in raw.items()})


__all__ = ["FeeVault"]
