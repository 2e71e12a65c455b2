"""Deterministic coin pricing.

Every trade moves a coin along a multiplicative walk: a buy marks the price up
by the tier's buy rate, a sell marks it down by the sell rate. The price a
trader pays or receives is also the coin's new resting price, and both are
computed from the same pre-trade ``current_price``.
"""
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")
LARGE_TIER_THRESHOLD = Decimal("100")

LARGE = "large"
SMALL = "small"


@dataclass(frozen=True)
class TierRates:
    buy: Decimal
    sell: Decimal


RATES = {
    LARGE: TierRates(buy=Decimal("0.04"), sell=Decimal("-0.05")),  # 3-digit coins
    SMALL: TierRates(buy=Decimal("0.02"), sell=Decimal("-0.03")),  # 1-2 digit coins
}


def to_money(value) -> Decimal:
    """Quantize to cents, half-up. Used for every price and balance amount."""
    try:
        return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise ValueError(f"Not a money amount: {value!r}") from exc


def tier(coin) -> str:
    return LARGE if Decimal(coin.start_price) >= LARGE_TIER_THRESHOLD else SMALL


def _apply_rate(coin, rate: Decimal) -> Decimal:
    price = to_money(Decimal(coin.current_price) * (1 + rate))
    # A coin can be marked down forever; it bottoms out at one cent
    return max(price, CENT)


def buy_price(coin) -> Decimal:
    return _apply_rate(coin, RATES[tier(coin)].buy)


def sell_price(coin) -> Decimal:
    return _apply_rate(coin, RATES[tier(coin)].sell)


def next_price_after_buy(coin) -> Decimal:
    return buy_price(coin)


def next_price_after_sell(coin) -> Decimal:
    return sell_price(coin)
