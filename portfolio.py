"""Holdings per (user, coin) and the account overview read model."""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from errors import InsufficientHoldingsError
from ledger import load_user
from models import Coin, PortfolioEntry
from pricing import to_money


@dataclass
class HoldingView:
    coin_id: int
    name: str
    amount: int
    current_price: Decimal
    value: Decimal

    def to_dict(self):
        return {
            "coin_id": self.coin_id,
            "name": self.name,
            "amount": self.amount,
            "current_price": self.current_price,
            "value": self.value,
        }


@dataclass
class AccountOverview:
    balance: Decimal
    holdings: List[HoldingView] = field(default_factory=list)
    total_value: Decimal = Decimal("0.00")


class PortfolioStore:
    def get_entry(self, session: Session, user_id, coin_id, lock: bool = True) -> Optional[PortfolioEntry]:
        stmt = select(PortfolioEntry).filter_by(user_id=user_id, coin_id=coin_id)
        if lock:
            stmt = stmt.with_for_update()
        return session.scalars(stmt).first()

    def amount_held(self, session: Session, user_id, coin_id) -> int:
        entry = self.get_entry(session, user_id, coin_id, lock=False)
        return entry.amount if entry else 0

    def add_units(self, session: Session, user_id, coin_id, units: int = 1) -> PortfolioEntry:
        entry = self.get_entry(session, user_id, coin_id)
        if entry:
            entry.amount += units
        else:
            entry = PortfolioEntry(user_id=user_id, coin_id=coin_id, amount=units)
            session.add(entry)
        return entry

    def remove_units(self, session: Session, user_id, coin_id, units: int = 1) -> PortfolioEntry:
        entry = self.get_entry(session, user_id, coin_id)
        if entry is None or entry.amount < units:
            raise InsufficientHoldingsError(f"Coin {coin_id} is not in the portfolio")
        entry.amount -= units
        return entry

    def account_overview(self, session: Session, user_id) -> AccountOverview:
        user = load_user(session, user_id, lock=False)
        rows = session.execute(
            select(Coin, PortfolioEntry.amount)
            .join(PortfolioEntry, PortfolioEntry.coin_id == Coin.id)
            .where(PortfolioEntry.user_id == user_id, PortfolioEntry.amount > 0)
            .order_by(Coin.name)
        ).all()

        # 총 자산 계산
        overview = AccountOverview(balance=user.balance, total_value=user.balance)
        for coin, amount in rows:
            value = to_money(coin.current_price * amount)
            overview.holdings.append(
                HoldingView(
                    coin_id=coin.id,
                    name=coin.name,
                    amount=amount,
                    current_price=coin.current_price,
                    value=value,
                )
            )
            overview.total_value += value
        overview.total_value = to_money(overview.total_value)
        return overview
