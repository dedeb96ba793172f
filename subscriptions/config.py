"""Settings loader for the subscription registry service."""
from __future__ import annotations

import re
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")

CURRENCY_BACKENDS = {"local", "erc20"}


class RegistrySettings(BaseSettings):
    registry_address: Optional[str] = Field(default=None, alias="REGISTRY_ADDRESS")
    state_path: Path = Field(default=Path("/app/data/registry_state.json"), alias="REGISTRY_STATE_PATH")
    journal_path: Optional[Path] = Field(default=Path("/app/data/events.log"), alias="REGISTRY_JOURNAL_PATH")

    currency_backend: str = Field(default="local", alias="REGISTRY_CURRENCY_BACKEND")
    currency_state_path: Path = Field(
        default=Path("/app/data/currency.json"),
        alias="REGISTRY_CURRENCY_STATE_PATH",
    )
    currency_contract_address: Optional[str] = Field(default=None, alias="CURRENCY_CONTRACT_ADDRESS")
    currency_dry_run: bool = Field(default=True, alias="CURRENCY_DRY_RUN")
    currency_receipt_timeout_seconds: int = Field(default=120, alias="CURRENCY_RECEIPT_TIMEOUT_SECONDS")

    eth_rpc_url: str = Field(default="http://localhost:8545", alias="ETH_RPC_URL")
    chain_id: int = Field(default=42161, alias="ETH_CHAIN_ID")

    custody_private_key: Optional[str] = Field(default=None, alias="CUSTODY_PRIVATE_KEY")
    custody_keystore_path: Optional[Path] = Field(default=None, alias="CUSTODY_KEYSTORE_PATH")
    custody_keystore_password: Optional[str] = Field(default=None, alias="CUSTODY_KEYSTORE_PASSWORD")

    api_host: str = Field(default="0.0.0.0", alias="REGISTRY_API_HOST")
    api_port: int = Field(default=8082, alias="REGISTRY_API_PORT")
    api_root_path: str = Field(default="", alias="REGISTRY_API_ROOT_PATH")
    api_admin_token: Optional[str] = Field(default=None, alias="REGISTRY_API_ADMIN_TOKEN")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("registry_address", "currency_contract_address")
    @classmethod
    def validate_address(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        candidate = value.strip()
        if not _ADDRESS_RE.match(candidate):
            raise ValueError("address must be a 42-character hex string")
        return candidate.lower()

    @field_validator("currency_backend")
    @classmethod
    def validate_backend(cls, value: str) -> str:
        candidate = value.strip().lower()
        if candidate not in CURRENCY_BACKENDS:
            raise ValueError(f"currency backend must be one of {sorted(CURRENCY_BACKENDS)}")
        return candidate

    @field_validator("api_port", "chain_id", "currency_receipt_timeout_seconds")
    @classmethod
    def validate_positive_int(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("Value must be positive")
        return value

    @model_validator(mode="after")
    def validate_backend_requirements(self) -> "RegistrySettings":
        if self.currency_backend == "erc20":
            if not self.currency_contract_address:
                raise ValueError("CURRENCY_CONTRACT_ADDRESS must be set for the erc20 currency backend")
            if not self.currency_dry_run and not (
                self.custody_private_key
                or (self.custody_keystore_path and self.custody_keystore_password)
            ):
                raise ValueError(
                    "CUSTODY_PRIVATE_KEY or CUSTODY_KEYSTORE_PATH/PASSWORD must be set when CURRENCY_DRY_RUN is disabled"
                )
        return self


def load_settings() -> RegistrySettings:
    return RegistrySettings()


__all__ = ["CURRENCY_BACKENDS", "RegistrySettings", "load_settings"]
