"""
Cash withdrawal workflow.

    pending --approve--> approved
    pending --reject---> rejected   (amount credited back)

The amount leaves the user's balance when the request is made, so a pending
withdrawal is cash held in escrow. Approval only finalises it. Rejection
refunds it, and because both terminal states refuse further transitions the
refund can happen at most once.
"""
import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import List

from sqlalchemy import select
from sqlalchemy.orm import Session

import ledger
from errors import InvalidInputError, InvalidStateError, NotFoundError
from models import APPROVED, PENDING, REJECTED, User, Withdrawal, utcnow
from unit_of_work import UnitOfWork, user_key, withdrawal_key

logger = logging.getLogger(__name__)

IBAN_PATTERN = re.compile(r"^[A-Z]{2}[0-9]{2}[A-Z0-9]{11,30}$")


def normalize_iban(iban) -> str:
    """Strip spaces, upper-case and verify the ISO 13616 mod-97 checksum."""
    if not isinstance(iban, str):
        raise InvalidInputError("IBAN is required")
    compact = re.sub(r"\s+", "", iban).upper()
    if not IBAN_PATTERN.match(compact):
        raise InvalidInputError("IBAN is malformed")
    rearranged = compact[4:] + compact[:4]
    digits = "".join(str(int(ch, 36)) for ch in rearranged)
    if int(digits) % 97 != 1:
        raise InvalidInputError("IBAN checksum is invalid")
    return compact


@dataclass
class WithdrawalRequestResult:
    new_balance: Decimal
    withdrawal: Withdrawal


@dataclass
class WithdrawalRejectResult:
    refunded: Decimal
    new_balance: Decimal
    withdrawal: Withdrawal


@dataclass
class PendingWithdrawal:
    withdrawal: Withdrawal
    username: str

    def to_dict(self):
        data = self.withdrawal.to_dict()
        data["username"] = self.username
        return data


class WithdrawalWorkflow:
    def __init__(self, uow: UnitOfWork):
        self._uow = uow

    def _load(self, session: Session, withdrawal_id, lock: bool = True) -> Withdrawal:
        withdrawal = session.get(Withdrawal, withdrawal_id, with_for_update=lock)
        if withdrawal is None:
            raise NotFoundError(f"Withdrawal {withdrawal_id} not found")
        return withdrawal

    def _ensure_pending(self, withdrawal: Withdrawal):
        if withdrawal.status != PENDING:
            raise InvalidStateError(
                f"Withdrawal {withdrawal.id} is already {withdrawal.status}"
            )

    def request(self, user_id, amount, iban) -> WithdrawalRequestResult:
        amount = ledger.parse_amount(amount)
        iban = normalize_iban(iban)

        with self._uow.begin(user_key(user_id)) as session:
            user = ledger.load_user(session, user_id)
            new_balance = ledger.debit(user, amount)
            withdrawal = Withdrawal(user_id=user_id, amount=amount, iban=iban, status=PENDING)
            session.add(withdrawal)
            session.flush()

        logger.info(
            "Withdrawal %s requested: user=%s amount=%s", withdrawal.id, user_id, amount
        )
        return WithdrawalRequestResult(new_balance=new_balance, withdrawal=withdrawal)

    def approve(self, withdrawal_id) -> Withdrawal:
        with self._uow.begin(withdrawal_key(withdrawal_id)) as session:
            withdrawal = self._load(session, withdrawal_id)
            self._ensure_pending(withdrawal)
            withdrawal.status = APPROVED
            withdrawal.decided_at = utcnow()

        logger.info("Withdrawal %s approved", withdrawal_id)
        return withdrawal

    def reject(self, withdrawal_id) -> WithdrawalRejectResult:
        # The owner never changes, so it can be looked up before locking
        with self._uow.read() as session:
            owner_id = self._load(session, withdrawal_id, lock=False).user_id

        with self._uow.begin(withdrawal_key(withdrawal_id), user_key(owner_id)) as session:
            withdrawal = self._load(session, withdrawal_id)
            self._ensure_pending(withdrawal)
            user = ledger.load_user(session, withdrawal.user_id)
            new_balance = ledger.credit(user, withdrawal.amount)
            withdrawal.status = REJECTED
            withdrawal.decided_at = utcnow()

        logger.info("Withdrawal %s rejected, %s refunded", withdrawal_id, withdrawal.amount)
        return WithdrawalRejectResult(
            refunded=withdrawal.amount, new_balance=new_balance, withdrawal=withdrawal
        )

    def pending(self) -> List[PendingWithdrawal]:
        with self._uow.read() as session:
            rows = session.execute(
                select(Withdrawal, User.username)
                .join(User, User.id == Withdrawal.user_id)
                .where(Withdrawal.status == PENDING)
                .order_by(Withdrawal.created_at.desc(), Withdrawal.id.desc())
            ).all()
        return [PendingWithdrawal(withdrawal=w, username=username) for w, username in rows]
