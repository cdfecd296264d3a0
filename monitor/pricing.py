"""Conversion of raw on-chain amounts into listing prices."""

from decimal import Decimal
from typing import Optional, Tuple, Union

# Token addresses
USDC_MINT = 'EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v'
SOL_MINT = 'So11111111111111111111111111111111111111112'

USDC_DECIMALS = 6
SOL_DECIMALS = 9


def is_stable_currency(currency: Optional[str]) -> bool:
    """Return True when the amount is denominated in USDC."""
    return currency == USDC_MINT


def normalize_amount(
    gross_amount: Optional[Union[int, str]],
    currency: Optional[str]
) -> Tuple[Optional[Decimal], Optional[Decimal]]:
    """Convert a raw amount in the currency's smallest unit into a price.

    Args:
        gross_amount: Raw integer amount (lamports or USDC base units), may be None
        currency: Mint address of the currency the amount is denominated in

    Returns:
        Tuple of (price_sol, price_usdc). At most one is set; both are None
        when the amount is unknown.
    """
    if gross_amount is None:
        return None, None

    amount = Decimal(int(gross_amount))
    if is_stable_currency(currency):
        return None, amount.scaleb(-USDC_DECIMALS)
    return amount.scaleb(-SOL_DECIMALS), None
