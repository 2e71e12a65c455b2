from decimal import Decimal

import pytest

from errors import NotFoundError
from market import MarketService
from models import Coin
from trading import TradeCoordinator


@pytest.fixture
def market(uow):
    return MarketService(uow)


def test_list_coins_orders_by_current_price(market, make):
    dear = make.coin(start_price="1000", name="Astra")
    cheap = make.coin(start_price="5", name="Crystal")
    mid = make.coin(start_price="100", current_price="60", name="Aureum")

    assert [c.id for c in market.list_coins()] == [cheap.id, mid.id, dear.id]


def test_coin_detail_includes_callers_holding(market, make):
    user, other = make.user(), make.user()
    coin = make.coin(start_price="250", name="Celestia")
    make.holding(user, coin, 3)

    detail = market.coin_detail(coin.id, user.id)

    assert detail["name"] == "Celestia"
    assert detail["tier"] == "large"
    assert detail["userAmount"] == 3
    assert market.coin_detail(coin.id, other.id)["userAmount"] == 0


def test_coin_detail_unknown_coin(market, make):
    user = make.user()
    with pytest.raises(NotFoundError):
        market.coin_detail(999, user.id)


def test_reset_prices_restores_start_price(market, make, uow):
    user = make.user(balance="10000")
    small = make.coin(start_price="5")
    large = make.coin(start_price="1000")
    trading = TradeCoordinator(uow)
    trading.buy(user.id, small.id)
    trading.buy(user.id, large.id)

    assert market.reset_prices() == 2

    assert make.get(Coin, small.id).current_price == Decimal("5.00")
    assert make.get(Coin, large.id).current_price == Decimal("1000.00")
    # Trading resumes from the reset price
    assert trading.buy(user.id, small.id).transaction.price == Decimal("5.10")
