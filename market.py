"""Coin listing, coin detail and the operator price reset."""
import logging
from typing import List

from sqlalchemy import select, update

from models import Coin
from portfolio import PortfolioStore
from pricing import tier
from trading import load_coin
from unit_of_work import UnitOfWork, coin_key

logger = logging.getLogger(__name__)


def coin_to_dict(coin: Coin) -> dict:
    return {
        "id": coin.id,
        "name": coin.name,
        "start_price": coin.start_price,
        "current_price": coin.current_price,
        "tier": tier(coin),
    }


class MarketService:
    def __init__(self, uow: UnitOfWork, portfolio: PortfolioStore = None):
        self._uow = uow
        self._portfolio = portfolio or PortfolioStore()

    def list_coins(self) -> List[Coin]:
        with self._uow.read() as session:
            return list(session.scalars(select(Coin).order_by(Coin.current_price.asc(), Coin.id)))

    def coin_detail(self, coin_id, user_id) -> dict:
        with self._uow.read() as session:
            coin = load_coin(session, coin_id, lock=False)
            detail = coin_to_dict(coin)
            detail["userAmount"] = self._portfolio.amount_held(session, user_id, coin_id)
        return detail

    def reset_prices(self) -> int:
        """Put every coin back at its start price.

        Waits for in-flight trades on every coin. The bulk UPDATE also bumps
        each row's version, so a trade in another process that read a coin
        before the reset fails its commit with a conflict instead of writing a
        price derived from the old value.
        """
        with self._uow.read() as session:
            coin_ids = list(session.scalars(select(Coin.id)))

        with self._uow.begin(*[coin_key(coin_id) for coin_id in coin_ids]) as session:
            result = session.execute(
                update(Coin).values(
                    current_price=Coin.start_price,
                    version_id=Coin.version_id + 1,
                ),
                execution_options={"synchronize_session": False},
            )
            count = result.rowcount
        logger.info("Reset prices of %d coins", count)
        return count
