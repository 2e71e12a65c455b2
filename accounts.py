"""User lookup and operator balance adjustments."""
import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import select

import ledger
from models import User
from unit_of_work import UnitOfWork, user_key

logger = logging.getLogger(__name__)


class AccountService:
    def __init__(self, uow: UnitOfWork):
        self._uow = uow

    def get_user(self, user_id) -> User:
        with self._uow.read() as session:
            return ledger.load_user(session, user_id, lock=False)

    def find_for_login(self, username, phone) -> Optional[User]:
        with self._uow.read() as session:
            return session.scalars(
                select(User).filter_by(username=username, phone=phone)
            ).first()

    def add_balance(self, user_id, amount) -> Decimal:
        amount = ledger.parse_amount(amount)
        with self._uow.begin(user_key(user_id)) as session:
            user = ledger.load_user(session, user_id)
            new_balance = ledger.credit(user, amount)
        logger.info("Balance added: user=%s amount=%s", user_id, amount)
        return new_balance

    def remove_balance(self, user_id, amount) -> Decimal:
        amount = ledger.parse_amount(amount)
        with self._uow.begin(user_key(user_id)) as session:
            user = ledger.load_user(session, user_id)
            new_balance = ledger.debit(user, amount)
        logger.info("Balance removed: user=%s amount=%s", user_id, amount)
        return new_balance
