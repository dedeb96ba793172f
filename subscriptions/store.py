"""JSON-backed persistence for the registry's tables."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from .catalog import ContentCatalog
from .holdings import EntitlementLedger, OperatorApprovals
from .vault import FeeVault


@dataclass
class RegistryState:
    catalog: ContentCatalog = field(default_factory=ContentCatalog)
    holdings: EntitlementLedger = field(default_factory=EntitlementLedger)
    vault: FeeVault = field(default_factory=FeeVault)
    approvals: OperatorApprovals = field(default_factory=OperatorApprovals)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "contents": self.catalog.snapshot(),
            "holdings": self.holdings.snapshot(),
            "fees": self.vault.snapshot(),
            "approvals": self.approvals.snapshot(),
        }

    @classmethod
    def from_snapshot(cls, raw: Dict[str, Any]) -> "RegistryState":
        return cls(
            catalog=ContentCatalog.from_snapshot(raw.get("contents") or {}),
            holdings=EntitlementLedger.from_snapshot(raw.get("holdings") or {}),
            vault=FeeVault.from_snapshot(raw.get("fees") or {}),
            approvals=OperatorApprovals.from_snapshot(raw.get("approvals") or {}),
        )


class StateStore:
    """Writes all tables as one document so a call's mutations land together."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = path

    def load(self) -> RegistryState:
        if self.path is None:
            return RegistryState()
        if not self.path.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
            return RegistryState()
        with self.path.open("r", encoding="utf-8") as handle:
            raw = json.load(handle)
        if not isinstance(raw, dict):
            raise ValueError(f"Registry state at {self.path} is not a JSON object")
        return RegistryState.from_snapshot(raw)

    def persist(self, state: RegistryState) -> None:
        if self.path is None:
            return
        tmp_path = self.path.with_suffix(".tmp")
        with tmp_path.open("w", encoding="utf-8") as handle:
            json.dump(state.snapshot(), handle, indent=2, sort_keys=True)
        tmp_path.replace(self.path)


__all__ = ["RegistryState", "StateStore"]
