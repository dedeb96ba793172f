"""Signing helpers for the registry custody key and for service providers."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Protocol

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount

from .authorizer import mint_message_hash

logger = logging.getLogger(__name__)


class SignerError(RuntimeError):
    pass


class Signer(Protocol):
    @property
    def address(self) -> str: ...

    def sign_transaction(self, tx: dict[str, Any]) -> bytes: ...

    def sign_message_defunct(self, message_hash: bytes) -> bytes: ...


@dataclass(frozen=True)
class LocalSigner:
    account: LocalAccount

    @property
    def address(self) -> str:
        return self.account.address

    def sign_transaction(self, tx: dict[str, Any]) -> bytes:
        signed = Account.sign_transaction(tx, self.account.key)
        raw = getattr(signed, "rawTransaction", None) or getattr(signed, "raw_transaction", None)
        if raw is None:  # pragma: no cover - depends on eth_account version
            raise SignerError("Signed transaction missing raw bytes")
        return bytes(raw)

    def sign_message_defunct(self, message_hash: bytes) -> bytes:
        signed = self.account.sign_message(encode_defunct(primitive=message_hash))
        return bytes(signed.signature)


def load_local_signer(
    private_key: Optional[str] = None,
    keystore_path: Optional[Path] = None,
    keystore_password: Optional[str] = None,
) -> Optional[LocalSigner]:
    if private_key:
        return LocalSigner(Account.from_key(private_key))
    if keystore_path and keystore_password:
        try:
            with Path(keystore_path).expanduser().open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            raise SignerError(f"Unable to read keystore {keystore_path}: {exc}") from exc
        try:
            decrypted = Account.decrypt(data, keystore_password)
        except ValueError as exc:
            raise SignerError(f"Failed to decrypt keystore {keystore_path}") from exc
        return LocalSigner(Account.from_key(decrypted))
    logger.info("No custody signing key configured")
    return None


def sign_mint_authorization(
    signer: Signer,
    registry_address: str,
    content_id: int,
    nonce: int,
) -> bytes:
    """Produce the provider signature that authorizes mint number ``nonce``."""
    return signer.sign_message_defunct(mint_message_hash(registry_address, content_id, nonce))


__all__ = [
    "LocalSigner",
    "Signer",
    "SignerError",
    "load_local_signer",
    "sign_mint_authorization",
]
