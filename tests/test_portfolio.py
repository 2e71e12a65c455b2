from decimal import Decimal

import pytest

from errors import InsufficientHoldingsError, NotFoundError
from models import PortfolioEntry
from portfolio import PortfolioStore


@pytest.fixture
def store():
    return PortfolioStore()


def test_add_units_creates_entry_on_first_buy(uow, make, store):
    user, coin = make.user(), make.coin()
    with uow.begin() as session:
        store.add_units(session, user.id, coin.id)
    with uow.read() as session:
        assert store.amount_held(session, user.id, coin.id) == 1
    assert make.count(PortfolioEntry) == 1


def test_add_units_increments_existing_entry(uow, make, store):
    user, coin = make.user(), make.coin()
    make.holding(user, coin, 3)
    with uow.begin() as session:
        store.add_units(session, user.id, coin.id)
    with uow.read() as session:
        assert store.amount_held(session, user.id, coin.id) == 4
    assert make.count(PortfolioEntry) == 1


def test_remove_units_keeps_zero_row(uow, make, store):
    user, coin = make.user(), make.coin()
    entry = make.holding(user, coin, 1)
    with uow.begin() as session:
        store.remove_units(session, user.id, coin.id)
    assert make.get(PortfolioEntry, entry.id).amount == 0


@pytest.mark.parametrize("held", [None, 0])
def test_remove_units_without_holdings_fails(uow, make, store, held):
    user, coin = make.user(), make.coin()
    if held is not None:
        make.holding(user, coin, held)
    with pytest.raises(InsufficientHoldingsError):
        with uow.begin() as session:
            store.remove_units(session, user.id, coin.id)


def test_amount_held_defaults_to_zero(uow, make, store):
    user, coin = make.user(), make.coin()
    with uow.read() as session:
        assert store.amount_held(session, user.id, coin.id) == 0


def test_account_overview_values_holdings_at_current_price(uow, make, store):
    user = make.user(balance="100")
    cheap = make.coin(start_price="5", current_price="5.10", name="Crystal")
    dear = make.coin(start_price="1000", name="Astra")
    empty = make.coin(start_price="10", name="Liora")
    make.holding(user, cheap, 3)
    make.holding(user, dear, 1)
    make.holding(user, empty, 0)

    with uow.read() as session:
        overview = store.account_overview(session, user.id)

    assert overview.balance == Decimal("100.00")
    assert [h.name for h in overview.holdings] == ["Astra", "Crystal"]
    assert overview.holdings[1].value == Decimal("15.30")
    assert overview.total_value == Decimal("1115.30")


def test_account_overview_unknown_user(uow, store):
    with pytest.raises(NotFoundError):
        with uow.read() as session:
            store.account_overview(session, 42)
