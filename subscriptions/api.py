"""HTTP API exposing the entitlement registry."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from .config import RegistrySettings
from .errors import RegistryError
from .registry import EntitlementRegistry

logger = logging.getLogger(__name__)

ADDRESS_PATTERN = r"^0x[a-fA-F0-9]{40}$"


def _coerce_uint(value: Any) -> Any:
    # Large amounts arrive as decimal strings to survive JSON number limits.
    if isinstance(value, str):
        candidate = value.strip()
        if not candidate.isdigit():
            raise ValueError("must be a non-negative integer")
        return int(candidate)
    return value


class MintPayload(BaseModel):
    content_id: int = Field(ge=0)
    unit_validity: int = Field(gt=0)
    holder: str = Field(pattern=ADDRESS_PATTERN)
    royalty_rate: int = Field(ge=0)
    unit_fee: int = Field(ge=0)
    service_provider: str = Field(pattern=ADDRESS_PATTERN)
    signature: str = Field(pattern=r"^0x[a-fA-F0-9]+$", max_length=1024)
    name: str = Field(default="", max_length=256)

    @field_validator("content_id", "unit_validity", "royalty_rate", "unit_fee", mode="before")
    @classmethod
    def coerce_uint(cls, value: Any) -> Any:
        return _coerce_uint(value)


class MintResponse(BaseModel):
    content_id: str
    holder: str
    service_provider: str
    nonce: str
    total_supply: str
    quantity: str
    expires_at: int
    fee_paid: str


class TransferPayload(BaseModel):
    sender: str = Field(pattern=ADDRESS_PATTERN)
    recipient: str = Field(pattern=ADDRESS_PATTERN)
    content_id: int = Field(ge=0)
    amount: int = Field(gt=0)
    operator: str = Field(pattern=ADDRESS_PATTERN)

    @field_validator("content_id", "amount", mode="before")
    @classmethod
    def coerce_uint(cls, value: Any) -> Any:
        return _coerce_uint(value)


class TransferResponse(BaseModel):
    operator: str
    sender: str
    recipient: str
    content_id: str
    amount: str
    validity_transferred: int
    royalty_paid: str


class WithdrawResponse(BaseModel):
    service_provider: str
    amount: str


class FeeBalanceResponse(BaseModel):
    service_provider: str
    withdrawable: str


class HoldingResponse(BaseModel):
    holder: str
    content_id: str
    quantity: str
    expires_at: int
    validity_left: int
    net_royalty: str


class ContentResponse(BaseModel):
    content_id: str
    service_provider: str
    unit_fee: str
    royalty_rate: int
    unit_validity: int
    name: str
    uri: str
    total_supply: str


class ApprovalPayload(BaseModel):
    owner: str = Field(pattern=ADDRESS_PATTERN)
    operator: str = Field(pattern=ADDRESS_PATTERN)
    approved: bool


class ApprovalResponse(BaseModel):
    owner: str
    operator: str
    approved: bool


class UriPayload(BaseModel):
    caller: str = Field(pattern=ADDRESS_PATTERN)
    uri: str = Field(max_length=2048)


class UriResponse(BaseModel):
    content_id: str
    uri: str


class EventsResponse(BaseModel):
    events: List[Dict[str, Any]]


def create_app(registry: EntitlementRegistry, settings: RegistrySettings) -> FastAPI:
    app = FastAPI(title="Subscription Registry", version="1.0.0")

    def _provided_token(request: Request) -> Optional[str]:
        return request.headers.get("X-Admin-Token")

    async def require_admin(request: Request) -> None:
        token = getattr(settings, "api_admin_token", None)
        if not token:
            return
        if _provided_token(request) != token:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Admin token required")

    @app.exception_handler(RegistryError)
    async def registry_error_handler(_: Request, exc: RegistryError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": str(exc), "kind": exc.kind, "retryable": exc.retryable},
        )

    # Registry calls hold its lock and may wait on chain receipts, so routes
    # that touch it are sync and run in the threadpool.
    @app.post("/api/subscriptions/mint", response_model=MintResponse)
    def mint(payload: MintPayload, _: Any = Depends(require_admin)) -> MintResponse:
        result = registry.mint(
            content_id=payload.content_id,
            unit_validity=payload.unit_validity,
            holder=payload.holder,
            royalty_rate=payload.royalty_rate,
            unit_fee=payload.unit_fee,
            service_provider=payload.service_provider,
            signature=payload.signature,
            name=payload.name,
        )
        return MintResponse(
            content_id=str(result.content_id),
            holder=result.holder,
            service_provider=result.service_provider,
            nonce=str(result.nonce),
            total_supply=str(result.total_supply),
            quantity=str(result.quantity),
            expires_at=result.expires_at,
            fee_paid=str(result.fee_paid),
        )

    @app.post("/api/subscriptions/transfer", response_model=TransferResponse)
    def transfer(payload: TransferPayload, _: Any = Depends(require_admin)) -> TransferResponse:
        result = registry.transfer(
            payload.sender,
            payload.recipient,
            payload.content_id,
            payload.amount,
            operator=payload.operator,
        )
        return TransferResponse(
            operator=result.operator,
            sender=result.sender,
            recipient=result.recipient,
            content_id=str(result.content_id),
            amount=str(result.amount),
            validity_transferred=result.validity_transferred,
            royalty_paid=str(result.royalty_paid),
        )

    @app.get("/api/subscriptions/{holder}/{content_id}", response_model=HoldingResponse)
    def get_holding(holder: str, content_id: int) -> HoldingResponse:
        holding = registry.holding(holder, content_id)
        return HoldingResponse(
            holder=holder.lower(),
            content_id=str(content_id),
            quantity=str(holding["quantity"]),
            expires_at=holding["expires_at"],
            validity_left=holding["validity_left"],
            net_royalty=str(holding["net_royalty"]),
        )

    @app.get("/api/fees/{service_provider}", response_model=FeeBalanceResponse)
    def get_fee_balance(service_provider: str) -> FeeBalanceResponse:
        balance = registry.fee_balance(service_provider)
        return FeeBalanceResponse(service_provider=service_provider.lower(), withdrawable=str(balance))

    @app.post("/api/fees/{service_provider}/withdraw", response_model=WithdrawResponse)
    def withdraw(service_provider: str, _: Any = Depends(require_admin)) -> WithdrawResponse:
        amount = registry.withdraw_fee(service_provider)
        return WithdrawResponse(service_provider=service_provider.lower(), amount=str(amount))

    @app.get("/api/contents/{content_id}", response_model=ContentResponse)
    def get_content(content_id: int) -> ContentResponse:
        record = registry.content(content_id)
        return ContentResponse(
            content_id=str(record.content_id),
            service_provider=record.service_provider,
            unit_fee=str(record.unit_fee),
            royalty_rate=record.royalty_rate,
            unit_validity=record.unit_validity,
            name=record.name,
            uri=record.uri,
            total_supply=str(record.total_supply),
        )

    @app.get("/api/contents/{content_id}/uri", response_model=UriResponse)
    def get_uri(content_id: int) -> UriResponse:
        return UriResponse(content_id=str(content_id), uri=registry.uri(content_id))

    @app.put("/api/contents/{content_id}/uri", response_model=UriResponse)
    def put_uri(content_id: int, payload: UriPayload, _: Any = Depends(require_admin)) -> UriResponse:
        record = registry.set_uri(content_id, payload.caller, payload.uri)
        return UriResponse(content_id=str(record.content_id), uri=record.uri)

    @app.put("/api/operators/approval", response_model=ApprovalResponse)
    def put_approval(payload: ApprovalPayload, _: Any = Depends(require_admin)) -> ApprovalResponse:
        registry.set_approval_for_all(payload.owner, payload.operator, payload.approved)
        return ApprovalResponse(
            owner=payload.owner.lower(),
            operator=payload.operator.lower(),
            approved=payload.approved,
        )

    @app.get("/api/operators/{owner}/{operator}", response_model=ApprovalResponse)
    def get_approval(owner: str, operator: str) -> ApprovalResponse:
        return ApprovalResponse(
            owner=owner.lower(),
            operator=operator.lower(),
            approved=registry.is_approved_for_all(owner, operator),
        )

    @app.get("/api/events", response_model=EventsResponse)
    def list_events(
        event: Optional[str] = Query(default=None, max_length=64),
        content_id: Optional[int] = Query(default=None, ge=0),
        limit: int = Query(default=200, ge=1, le=1000),
    ) -> EventsResponse:
        entries = registry.journal.entries(event=event, content_id=content_id, limit=limit)
        return EventsResponse(events=list(reversed(entries)))

    return app


def run_api(app: FastAPI, settings: RegistrySettings) -> None:
    """Run the FastAPI app using uvicorn."""
    import uvicorn  # Imported lazily to avoid mandatory dependency in tests

    config = uvicorn.Config(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level="info",
        root_path=settings.api_root_path,
    )
    server = uvicorn.Server(config)
    server.run()


__all__ = ["create_app", "run_api"]
