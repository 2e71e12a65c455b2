from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import CheckConstraint, UniqueConstraint, event

from errors import InvalidStateError

db = SQLAlchemy()

MONEY = db.Numeric(18, 2)

BUY = 'buy'
SELL = 'sell'

PENDING = 'pending'
APPROVED = 'approved'
REJECTED = 'rejected'


def utcnow():
    return datetime.now(timezone.utc)


class User(db.Model):
    __tablename__ = 'users'
    __table_args__ = (CheckConstraint('balance >= 0', name='ck_users_balance_non_negative'),)

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    password = db.Column(db.String(255), nullable=False)  # 해시된 비밀번호
    phone = db.Column(db.String(20), unique=True, nullable=False)
    balance = db.Column(MONEY, nullable=False, default=0)
    is_admin = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    version_id = db.Column(db.Integer, nullable=False)

    __mapper_args__ = {'version_id_col': version_id}


class Coin(db.Model):
    __tablename__ = 'coins'
    __table_args__ = (
        CheckConstraint('current_price > 0', name='ck_coins_price_positive'),
        CheckConstraint('start_price > 0', name='ck_coins_start_price_positive'),
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(80), unique=True, nullable=False)
    start_price = db.Column(MONEY, nullable=False)  # fixed at creation, defines the tier
    current_price = db.Column(MONEY, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    version_id = db.Column(db.Integer, nullable=False)

    __mapper_args__ = {'version_id_col': version_id}


class PortfolioEntry(db.Model):
    __tablename__ = 'portfolio'
    __table_args__ = (
        UniqueConstraint('user_id', 'coin_id', name='uq_portfolio_user_coin'),
        CheckConstraint('amount >= 0', name='ck_portfolio_amount_non_negative'),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    coin_id = db.Column(db.Integer, db.ForeignKey('coins.id'), nullable=False)
    amount = db.Column(db.Integer, nullable=False, default=0)  # 코인 수량
    version_id = db.Column(db.Integer, nullable=False)

    __mapper_args__ = {'version_id_col': version_id}


class Transaction(db.Model):
    __tablename__ = 'transactions'
    __table_args__ = (CheckConstraint("type IN ('buy', 'sell')", name='ck_transactions_type'),)

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    coin_id = db.Column(db.Integer, db.ForeignKey('coins.id'), nullable=False)
    type = db.Column(db.String(10), nullable=False)  # buy/sell
    amount = db.Column(db.Integer, nullable=False)
    price = db.Column(MONEY, nullable=False)  # 거래 가격 (per unit)
    total = db.Column(MONEY, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "coin_id": self.coin_id,
            "type": self.type,
            "amount": self.amount,
            "price": self.price,
            "total": self.total,
            "created_at": self.created_at.isoformat(),
        }


class Withdrawal(db.Model):
    __tablename__ = 'withdrawals'
    __table_args__ = (
        CheckConstraint('amount > 0', name='ck_withdrawals_amount_positive'),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')", name='ck_withdrawals_status'
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    amount = db.Column(MONEY, nullable=False)
    iban = db.Column(db.String(34), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=PENDING)  # pending/approved/rejected
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "amount": self.amount,
            "iban": self.iban,
            "status": self.status,
            "created_at": self.created_at.isoformat(),
            "decided_at": self.decided_at.isoformat() if self.decided_at else None,
        }


# Trade records are an audit trail: once flushed they are never touched again
@event.listens_for(Transaction, 'before_update')
def _reject_transaction_update(mapper, connection, target):
    raise InvalidStateError(f"Transaction {target.id} is append-only")


@event.listens_for(Transaction, 'before_delete')
def _reject_transaction_delete(mapper, connection, target):
    raise InvalidStateError(f"Transaction {target.id} is append-only")
