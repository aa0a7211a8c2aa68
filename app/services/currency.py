"""
Currency Conversion

Prices are stored in EUR. Everything a guest or a cashier sees is derived
from the EUR amount with the rate configured in the restaurant settings, and
prices typed by staff in display currency come back through the same rate.

Rounding only happens in format_price(); converted amounts keep full float
precision so a stored value is never truncated on the way through.
"""

from dataclasses import dataclass
from typing import Optional

from app.models import CurrencyCode, RestaurantSettings

SYMBOLS = {
    CurrencyCode.EUR: "€",
    CurrencyCode.DJF: "Fdj",
    CurrencyCode.USD: "$",
}


@dataclass(frozen=True)
class DisplayPrice:
    """An amount expressed in the restaurant's display currency."""
    amount: float
    symbol: str
    currency: CurrencyCode = CurrencyCode.EUR

    def formatted(self) -> str:
        return format_price(self.amount, self.symbol)

    def to_dict(self) -> dict:
        return {
            "amount": round(self.amount, 2),
            "symbol": self.symbol,
            "currency": self.currency.value,
            "formatted": self.formatted(),
        }


def _currency_of(settings: Optional[RestaurantSettings]) -> CurrencyCode:
    if settings is None or settings.currency is None:
        return CurrencyCode.EUR
    try:
        return CurrencyCode(settings.currency)
    except ValueError:
        return CurrencyCode.EUR


def rate_for(settings: Optional[RestaurantSettings]) -> float:
    """
    EUR -> display rate for the configured currency.

    Unknown currencies and missing settings fall back to 1.0 (EUR identity).
    """
    currency = _currency_of(settings)
    if currency == CurrencyCode.DJF:
        return settings.eur_to_djf
    if currency == CurrencyCode.USD:
        return settings.eur_to_usd
    return 1.0


def symbol_for(settings: Optional[RestaurantSettings]) -> str:
    return SYMBOLS[_currency_of(settings)]


def convert_from_eur(amount_eur: float, settings: Optional[RestaurantSettings]) -> DisplayPrice:
    """Map a canonical EUR amount to the display currency."""
    return DisplayPrice(
        amount=amount_eur * rate_for(settings),
        symbol=symbol_for(settings),
        currency=_currency_of(settings),
    )


def convert_to_eur(amount: float, settings: Optional[RestaurantSettings]) -> float:
    """
    Inverse of convert_from_eur, for prices entered in display currency.

    Raises:
        ValueError: If the configured rate is not positive
    """
    rate = rate_for(settings)
    if rate <= 0:
        raise ValueError(f"Conversion rate must be positive, got {rate}")
    return amount / rate


def format_price(amount: float, symbol: str = "€") -> str:
    """Presentation rounding: two decimals followed by the symbol."""
    return f"{amount:.2f} {symbol}"
