"""Per-content terms, supply counters and display metadata."""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, List, Optional

from .errors import ContentMismatch, NotFound, Unauthorized

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContentRecord:
    content_id: int
    service_provider: str
    unit_fee: int
    royalty_rate: int
    unit_validity: int
    name: str
    uri: str = ""
    total_supply: int = 0

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["content_id"] = str(self.content_id)
        data["unit_fee"] = str(self.unit_fee)
        return data

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "ContentRecord":
        return cls(
            content_id=int(raw["content_id"]),
            service_provider=str(raw["service_provider"]).lower(),
            unit_fee=int(raw["unit_fee"]),
            royalty_rate=int(raw["royalty_rate"]),
            unit_validity=int(raw["unit_validity"]),
            name=str(raw.get("name") or ""),
            uri=str(raw.get("uri") or ""),
            total_supply=int(raw.get("total_supply", 0)),
        )


class ContentCatalog:
    """Content records keyed by content id.

    Terms (provider, fee, royalty rate, validity) are fixed by the first
    mint of a content id. Only ``total_supply`` and ``uri`` change after
    that, and ``total_supply`` only ever grows.
    """

    def __init__(self, records: Optional[Dict[int, ContentRecord]] = None) -> None:
        self._records: Dict[int, ContentRecord] = dict(records or {})

    def get(self, content_id: int) -> Optional[ContentRecord]:
        return self._records.get(content_id)

    def require(self, content_id: int) -> ContentRecord:
        record = self._records.get(content_id)
        if record is None:
            raise NotFound(f"Content {content_id} has never been minted")
        return record

    def register_or_get(
        self,
        content_id: int,
        provider: str,
        unit_fee: int,
        royalty_rate: int,
        unit_validity: int,
        name: str = "",
    ) -> ContentRecord:
        record = self._records.get(content_id)
        if record is None:
            record = ContentRecord(
                content_id=content_id,
                service_provider=provider.lower(),
                unit_fee=unit_fee,
                royalty_rate=royalty_rate,
                unit_validity=unit_validity,
                name=name,
            )
            self._records[content_id] = record
            logger.debug("Registered content %s for provider %s", content_id, record.service_provider)
            return record

        mismatched: List[str] = []
        if record.service_provider != provider.lower():
            mismatched.append("service_provider")
        if record.unit_fee != unit_fee:
            mismatched.append("unit_fee")
        if record.royalty_rate != royalty_rate:
            mismatched.append("royalty_rate")
        if record.unit_validity != unit_validity:
            mismatched.append("unit_validity")
        if mismatched:
            raise ContentMismatch(
                f"Content {content_id} was registered with different terms: {', '.join(mismatched)}"
            )
        return record

    def next_supply_index(self, content_id: int) -> int:
        record = self._records.get(content_id)
        return record.total_supply if record else 0

    def increment_supply(self, content_id: int, quantity: int = 1) -> int:
        record = self.require(content_id)
        updated = replace(record, total_supply=record.total_supply + quantity)
        self._records[content_id] = updated
        return updated.total_supply

    def set_uri(self, content_id: int, caller: str, new_uri: str) -> ContentRecord:
        record = self.require(content_id)
        if caller.lower() != record.service_provider:
            raise Unauthorized()
        updated = replace(record, uri=new_uri)
        self._records[content_id] = updated
        return updated

    def uri(self, content_id: int) -> str:
        return self.require(content_id).uri

    def all_records(self) -> List[ContentRecord]:
        return [self._records[key] for key in sorted(self._records)]

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return {str(key): record.as_dict() for key, record in self._records.items()}

    @classmethod
    def from_snapshot(cls, raw: Dict[str, Dict[str, Any]]) -> "ContentCatalog":
        records = {}
        for key, value in raw.items():
            if not isinstance(value, dict):
                continue
            record = ContentRecord.from_dict(value)
            records[int(key)] = record
        return cls(records)


__all__ = ["ContentCatalog", "ContentRecord"]
