from decimal import Decimal, ROUND_HALF_UP

# Currencies the gateway takes in whole units (no minor denomination).
ZERO_DECIMAL_CURRENCIES = frozenset({
    "BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA",
    "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
})


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() first so floats like 2150.1 don't drag binary noise into the amount
    return Decimal(str(value))


def _exponent(currency: str) -> int:
    return 0 if currency.upper() in ZERO_DECIMAL_CURRENCIES else 2


def to_minor_units(amount, currency: str) -> int:
    """2150.00 GBP -> 215000; 500 JPY -> 500."""
    factor = Decimal(10) ** _exponent(currency)
    return int((to_decimal(amount) * factor).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int, currency: str) -> Decimal:
    exp = _exponent(currency)
    return (Decimal(int(amount)) / (Decimal(10) ** exp)).quantize(Decimal(1).scaleb(-exp))


def quantize_amount(amount, currency: str) -> Decimal:
    return to_decimal(amount).quantize(Decimal(1).scaleb(-_exponent(currency)), rounding=ROUND_HALF_UP)
