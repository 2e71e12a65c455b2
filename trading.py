"""
Buy and sell one coin unit as a single atomic unit of work.

Each trade reads and writes three records (user balance, portfolio row, coin
price) and appends one transaction. All four writes commit together or not
at all, while the coin, user and portfolio locks are held.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.orm import Session

import ledger
import pricing
from errors import NotFoundError
from models import BUY, SELL, Coin, Transaction
from portfolio import PortfolioStore
from transaction_log import TransactionLog
from unit_of_work import UnitOfWork, coin_key, portfolio_key, user_key

logger = logging.getLogger(__name__)

TRADE_UNIT = 1


@dataclass
class TradeResult:
    new_balance: Decimal
    new_price: Decimal
    transaction: Transaction

    def to_dict(self):
        return {
            "newBalance": self.new_balance,
            "newPrice": self.new_price,
            "transaction": self.transaction.to_dict(),
        }


def load_coin(session: Session, coin_id, lock: bool = True) -> Coin:
    coin = session.get(Coin, coin_id, with_for_update=lock)
    if coin is None:
        raise NotFoundError(f"Coin {coin_id} not found")
    return coin


class TradeCoordinator:
    def __init__(self, uow: UnitOfWork, portfolio: PortfolioStore = None, log: TransactionLog = None):
        self._uow = uow
        self._portfolio = portfolio or PortfolioStore()
        self._log = log or TransactionLog()

    def _locks(self, user_id, coin_id):
        return coin_key(coin_id), user_key(user_id), portfolio_key(user_id, coin_id)

    def buy(self, user_id, coin_id) -> TradeResult:
        with self._uow.begin(*self._locks(user_id, coin_id)) as session:
            coin = load_coin(session, coin_id)
            price = pricing.buy_price(coin)
            next_price = pricing.next_price_after_buy(coin)

            user = ledger.load_user(session, user_id)
            new_balance = ledger.debit(user, price)

            self._portfolio.add_units(session, user_id, coin_id, TRADE_UNIT)
            record = self._log.append(session, user_id, coin_id, BUY, price, TRADE_UNIT)
            coin.current_price = next_price

        logger.info(
            "Buy executed: user=%s coin=%s price=%s tx=%s", user_id, coin_id, price, record.id
        )
        return TradeResult(new_balance=new_balance, new_price=next_price, transaction=record)

    def sell(self, user_id, coin_id) -> TradeResult:
        with self._uow.begin(*self._locks(user_id, coin_id)) as session:
            coin = load_coin(session, coin_id)
            self._portfolio.remove_units(session, user_id, coin_id, TRADE_UNIT)

            price = pricing.sell_price(coin)
            next_price = pricing.next_price_after_sell(coin)

            user = ledger.load_user(session, user_id)
            new_balance = ledger.credit(user, price)

            record = self._log.append(session, user_id, coin_id, SELL, price, TRADE_UNIT)
            coin.current_price = next_price

        logger.info(
            "Sell executed: user=%s coin=%s price=%s tx=%s", user_id, coin_id, price, record.id
        )
        return TradeResult(new_balance=new_balance, new_price=next_price, transaction=record)
