"""CLI entrypoint for the subscription registry service."""
from __future__ import annotations

import logging
import sys

from pydantic import ValidationError

from .api import create_app, run_api
from .config import RegistrySettings, load_settings
from .currency import Erc20Currency, LocalCurrency, SettlementCurrency
from .events import EventJournal
from .registry import EntitlementRegistry
from .signer import load_local_signer
from .store import StateStore


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s:%(lineno)d | %(message)s",
        stream=sys.stdout,
    )


def build_currency(settings: RegistrySettings) -> SettlementCurrency:
    if settings.currency_backend == "erc20":
        signer = load_local_signer(
            private_key=settings.custody_private_key,
            keystore_path=settings.custody_keystore_path,
            keystore_password=settings.custody_keystore_password,
        )
        return Erc20Currency.from_rpc(
            settings.eth_rpc_url,
            str(settings.currency_contract_address),
            settings.chain_id,
            signer,
            dry_run=settings.currency_dry_run,
            receipt_timeout_seconds=settings.currency_receipt_timeout_seconds,
        )
    return LocalCurrency(str(settings.registry_address), settings.currency_state_path)


def build_registry(settings: RegistrySettings) -> EntitlementRegistry:
    if not settings.registry_address:
        raise ValueError("REGISTRY_ADDRESS must be set")
    return EntitlementRegistry(
        settings.registry_address,
        build_currency(settings),
        store=StateStore(settings.state_path),
        journal=EventJournal(settings.journal_path),
    )


def main() -> None:
    configure_logging()
    logger = logging.getLogger(__name__)

    try:
        settings = load_settings()
    except ValidationError as exc:
        logger.error("Invalid registry configuration: %s", exc)
        raise SystemExit(2) from exc

    logger.info("Starting subscription registry (currency=%s)", settings.currency_backend)
    registry = build_registry(settings)
    logger.info("Registry address %s, state at %s", registry.address, settings.state_path)

    app = create_app(registry, settings)
    logger.info("HTTP API available at http://%s:%s", settings.api_host, settings.api_port)
    run_api(app, settings)


if __name__ == "__main__":
    main()
