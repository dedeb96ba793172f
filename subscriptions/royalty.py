"""Pro-rated royalty owed when a partially consumed subscription changes hands."""
from __future__ import annotations

ROYALTY_DENOMINATOR = 1000


def royalty_owed(
    royalty_rate: int,
    unit_fee: int,
    remaining_validity: int,
    unit_validity: int,
) -> int:
    """Return the royalty owed to the provider for the unconsumed validity.

    ``royalty_rate`` is expressed in parts-per-thousand of ``unit_fee``. The
    product is formed before the single truncating division so no precision
    is lost to intermediate rounding.
    """
    if unit_validity <= 0 or remaining_validity <= 0:
        return 0
    numerator = royalty_rate * unit_fee * remaining_validity
    return numerator // (unit_validity * ROYALTY_DENOMINATOR)


__all__ = ["ROYALTY_DENOMINATOR", "royalty_owed"]
