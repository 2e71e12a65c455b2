"""Append-only trade records, per-user history and OHLCV candles."""
from decimal import Decimal
from typing import List

import pandas as pd
from sqlalchemy import select
from sqlalchemy.orm import Session

from errors import InvalidInputError
from models import BUY, SELL, Transaction
from pricing import to_money

# Same interval names the old pyupbit chart endpoint accepted
INTERVALS = {
    "minute1": "1min",
    "minute5": "5min",
    "minute15": "15min",
    "minute60": "60min",
    "day": "1D",
}


class TransactionLog:
    def append(self, session: Session, user_id, coin_id, side: str, price: Decimal, amount: int = 1) -> Transaction:
        if side not in (BUY, SELL):
            raise InvalidInputError(f"Unknown trade side {side!r}")
        record = Transaction(
            user_id=user_id,
            coin_id=coin_id,
            type=side,
            amount=amount,
            price=price,
            total=to_money(price * amount),
        )
        session.add(record)
        # Assign id and created_at now so the caller can hand the record back
        session.flush()
        return record

    def history(self, session: Session, user_id, limit: int = 100) -> List[Transaction]:
        return list(
            session.scalars(
                select(Transaction)
                .where(Transaction.user_id == user_id)
                .order_by(Transaction.created_at.desc(), Transaction.id.desc())
                .limit(limit)
            )
        )

    def ohlcv(self, session: Session, coin_id, interval: str = "minute1") -> List[dict]:
        rule = INTERVALS.get(interval)
        if rule is None:
            raise InvalidInputError(f"Unsupported interval {interval!r}")

        rows = session.execute(
            select(Transaction.created_at, Transaction.price, Transaction.amount)
            .where(Transaction.coin_id == coin_id)
            .order_by(Transaction.created_at, Transaction.id)
        ).all()
        if not rows:
            return []

        df = pd.DataFrame(rows, columns=["timestamp", "price", "volume"])
        df["timestamp"] = pd.to_datetime(df["timestamp"])
        df["price"] = df["price"].astype(float)
        bars = df.set_index("timestamp").resample(rule).agg(
            {"price": ["first", "max", "min", "last"], "volume": "sum"}
        )
        bars.columns = ["open", "high", "low", "close", "volume"]
        # Buckets without trades carry no prices
        bars = bars.dropna(subset=["open"]).reset_index()
        bars["volume"] = bars["volume"].astype(int)
        bars["timestamp"] = bars["timestamp"].map(lambda ts: ts.isoformat())
        return bars.to_dict("records")
