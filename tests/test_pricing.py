from decimal import Decimal
from types import SimpleNamespace

import pytest

import pricing


def coin(start, current=None):
    return SimpleNamespace(start_price=Decimal(start), current_price=Decimal(current or start))


@pytest.mark.parametrize("start,expected", [
    ("5", pricing.SMALL),
    ("99.99", pricing.SMALL),
    ("100", pricing.LARGE),
    ("2500", pricing.LARGE),
])
def test_tier_boundary_is_inclusive_at_100(start, expected):
    assert pricing.tier(coin(start)) == expected


def test_tier_depends_on_start_price_not_current_price():
    assert pricing.tier(coin("50", "150")) == pricing.SMALL
    assert pricing.tier(coin("100", "60")) == pricing.LARGE


def test_small_coin_buy_and_sell_prices():
    c = coin("5")
    assert pricing.buy_price(c) == Decimal("5.10")
    assert pricing.sell_price(c) == Decimal("4.85")


def test_large_coin_buy_and_sell_prices():
    c = coin("1000")
    assert pricing.buy_price(c) == Decimal("1040.00")
    assert pricing.sell_price(c) == Decimal("950.00")


def test_boundary_coin_uses_large_rates():
    assert pricing.buy_price(coin("100")) == Decimal("104.00")


def test_next_price_equals_trade_price():
    for c in (coin("5", "7.33"), coin("250", "311.17")):
        assert pricing.next_price_after_buy(c) == pricing.buy_price(c)
        assert pricing.next_price_after_sell(c) == pricing.sell_price(c)


def test_prices_round_half_up_to_cents():
    # 10.25 * 1.02 = 10.455
    assert pricing.buy_price(coin("10", "10.25")) == Decimal("10.46")


def test_price_never_drops_to_zero():
    c = coin("5", "0.01")
    for _ in range(5):
        c.current_price = pricing.next_price_after_sell(c)
        assert c.current_price > 0
    assert c.current_price == pricing.CENT


def test_to_money_rejects_garbage():
    with pytest.raises(ValueError):
        pricing.to_money("abc")


@pytest.mark.parametrize("start,current", [("5", "0.20"), ("500", "0.12"), ("5", "0.01")])
def test_cheap_coin_buy_rounds_back_to_the_same_cent(start, current):
    # The rate moves the price by less than half a cent, so it stays put
    c = coin(start, current)
    assert pricing.buy_price(c) == Decimal(current)
    assert pricing.next_price_after_buy(c) == Decimal(current)
