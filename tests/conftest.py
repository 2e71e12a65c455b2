from decimal import Decimal

import pytest
from flask_jwt_extended import create_access_token
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from werkzeug.security import generate_password_hash

from models import Coin, PortfolioEntry, User, db
from unit_of_work import UnitOfWork, make_session_factory

VALID_IBAN = "DE89370400440532013000"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    db.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def uow(session_factory):
    return UnitOfWork(session_factory, lock_timeout=5)


class Factory:
    """Creates committed records and reads them back fresh."""

    def __init__(self, session_factory):
        self._session_factory = session_factory
        self._seq = 0

    def _add(self, obj):
        with self._session_factory() as session:
            session.add(obj)
            session.commit()
        return obj

    def user(self, balance="0", username=None, is_admin=False, password="secret"):
        self._seq += 1
        return self._add(User(
            username=username or f"user{self._seq}",
            password=generate_password_hash(password),
            phone=f"{10000 + self._seq}",
            balance=Decimal(balance),
            is_admin=is_admin,
        ))

    def coin(self, start_price="5", current_price=None, name=None):
        self._seq += 1
        return self._add(Coin(
            name=name or f"coin{self._seq}",
            start_price=Decimal(start_price),
            current_price=Decimal(current_price or start_price),
        ))

    def holding(self, user, coin, amount):
        return self._add(PortfolioEntry(user_id=user.id, coin_id=coin.id, amount=amount))

    def get(self, model, pk):
        with self._session_factory() as session:
            return session.get(model, pk)

    def amount_held(self, user, coin):
        with self._session_factory() as session:
            entry = session.query(PortfolioEntry).filter_by(user_id=user.id, coin_id=coin.id).first()
            return entry.amount if entry else 0

    def count(self, model):
        with self._session_factory() as session:
            return session.query(model).count()


@pytest.fixture
def make(session_factory):
    return Factory(session_factory)


@pytest.fixture
def app():
    from app import create_app

    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "JWT_SECRET_KEY": "test-secret-key-with-enough-length-for-hs256",
        "LOCK_TIMEOUT_SECONDS": 5,
    })
    yield app
    with app.app_context():
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def app_make(app):
    return Factory(app.extensions["exchange"].uow.session_factory)


@pytest.fixture
def auth_headers(app):
    def _headers(user):
        with app.app_context():
            token = create_access_token(
                identity=str(user.id), additional_claims={"is_admin": bool(user.is_admin)}
            )
        return {"Authorization": f"Bearer {token}"}

    return _headers
