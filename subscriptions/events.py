"""Observable registry events and their append-only journal."""
from __future__ import annotations

import json
import logging
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class NewAccess:
    content_id: int
    service_provider: str
    unit_validity: int
    unit_fee: int
    holder: str
    royalty_rate: int
    name: str
    event: str = field(default="NewAccess", init=False)


@dataclass(frozen=True)
class TransferSingle:
    operator: str
    sender: str
    recipient: str
    content_id: int
    amount: int
    royalty: int = 0
    event: str = field(default="TransferSingle", init=False)


@dataclass(frozen=True)
class ApprovalForAll:
    owner: str
    operator: str
    approved: bool
    event: str = field(default="ApprovalForAll", init=False)


@dataclass(frozen=True)
class URI:
    value: str
    content_id: int
    event: str = field(default="URI", init=False)


@dataclass(frozen=True)
class FeeWithdrawn:
    service_provider: str
    amount: int
    event: str = field(default="FeeWithdrawn", init=False)


def event_payload(event: Any) -> Dict[str, Any]:
    payload = asdict(event)
    # Amounts can exceed the JSON safe-integer range.
    for key in ("unit_fee", "amount", "royalty", "content_id"):
        if key in payload:
            payload[key] = str(payload[key])
    return payload


class EventJournal:
    """Keeps emitted events in memory and optionally mirrors them to JSON lines."""

    def __init__(self, path: Optional[Path] = None, *, max_in_memory: int = 10_000) -> None:
        self.path = path
        self.max_in_memory = max_in_memory
        self._lock = threading.Lock()
        self._entries: List[Dict[str, Any]] = []
        if self.path is not None and self.path.exists():
            self._entries = self._read_existing()[-max_in_memory:]

    def _read_existing(self) -> List[Dict[str, Any]]:
        entries: List[Dict[str, Any]] = []
        try:
            with self.path.open("r", encoding="utf-8") as handle:  # type: ignore[union-attr]
                for line in handle:
                    try:
                        entry = json.loads(line)
                    except json.JSONDecodeError:
                        continue
                    if isinstance(entry, dict):
                        entries.append(entry)
        except OSError as exc:
            logger.error("Unable to read event journal %s: %s", self.path, exc)
        return entries

    def emit(self, event: Any) -> Dict[str, Any]:
        entry = {"timestamp": _utcnow_iso(), **event_payload(event)}
        with self._lock:
            self._entries.append(entry)
            if len(self._entries) > self.max_in_memory:
                del self._entries[: len(self._entries) - self.max_in_memory]
            self._append(entry)
        return entry

    def _append(self, entry: Dict[str, Any]) -> None:
        if self.path is None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                json.dump(entry, handle, separators=(",", ":"))
                handle.write("\n")
        except OSError as exc:
            # The call already committed; a lost journal line must not undo it.
            logger.error("Failed to append %s to event journal: %s", entry.get("event"), exc)

    def entries(
        self,
        *,
        event: Optional[str] = None,
        content_id: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        with self._lock:
            selected = list(self._entries)
        if event:
            selected = [entry for entry in selected if entry.get("event") == event]
        if content_id is not None:
            wanted = str(content_id)
            selected = [entry for entry in selected if entry.get("content_id") == wanted]
        if limit is not None:
            selected = selected[-limit:]
        return selected


__all__ = [
    "ApprovalForAll",
    "EventJournal",
    "FeeWithdrawn",
    "NewAccess",
    "TransferSingle",
    "URI",
    "event_payload",
]
