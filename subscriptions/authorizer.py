"""Mint authorization messages and signer recovery."""
from __future__ import annotations

import logging
from typing import Union

from eth_abi.packed import encode_packed
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import is_hex_address, keccak, to_checksum_address

from .errors import InvalidArgument

logger = logging.getLogger(__name__)

MAX_UINT256 = (1 << 256) - 1

SignatureLike = Union[bytes, bytearray, str]


def normalize_address(value: str, *, name: str = "address") -> str:
    if not isinstance(value, str):
        raise InvalidArgument(f"{name} must be a hex string")
    candidate = value.strip()
    if not is_hex_address(candidate):
        raise InvalidArgument(f"{name} must be a 20-byte hex address")
    return candidate.lower()


def require_uint256(value: int, *, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidArgument(f"{name} must be an integer")
    if value < 0 or value > MAX_UINT256:
        raise InvalidArgument(f"{name} is outside the uint256 range")
    return value


def mint_message_hash(registry_address: str, content_id: int, nonce: int) -> bytes:
    """keccak256(abi.encodePacked(registry, contentId, totalSupply))."""
    packed = encode_packed(
        ["address", "uint256", "uint256"],
        [to_checksum_address(registry_address), int(content_id), int(nonce)],
    )
    return keccak(packed)


def _signature_bytes(signature: SignatureLike) -> bytes:
    if isinstance(signature, (bytes, bytearray)):
        return bytes(signature)
    candidate = signature.strip()
    if candidate.startswith(("0x", "0X")):
        candidate = candidate[2:]
    return bytes.fromhex(candidate)


def recover_signer(message: bytes, signature: SignatureLike) -> str:
    sig = _signature_bytes(signature)
    recovered = Account.recover_message(encode_defunct(primitive=message), signature=sig)
    return recovered.lower()


class SignatureAuthorizer:
    """Verifies EIP-191 personal-sign signatures over 32-byte message hashes."""

    def verify(self, message: bytes, signature: SignatureLike, expected_signer: str) -> bool:
        try:
            recovered = recover_signer(message, signature)
        except Exception as exc:
            logger.debug("Signature recovery failed: %s", exc)
            return False
        return recovered == expected_signer.lower()


__all__ = [
    "MAX_UINT256",
    "SignatureAuthorizer",
    "mint_message_hash",
    "normalize_address",
    "recover_signer",
    "require_uint256",
]
