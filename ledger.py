"""Balance primitives. Callers must already be inside a unit of work."""
from decimal import Decimal

from sqlalchemy.orm import Session

from errors import InsufficientFundsError, InvalidInputError, NotFoundError
from models import User
from pricing import CENT, to_money


# Numeric(18, 2) leaves sixteen integer digits
MAX_AMOUNT = Decimal("1e16")


def parse_amount(value) -> Decimal:
    """Validate a caller-supplied cash amount: positive, at most two decimals."""
    if isinstance(value, bool) or value is None:
        raise InvalidInputError("Amount is required")
    try:
        amount = Decimal(str(value))
    except ArithmeticError:
        raise InvalidInputError(f"Amount {value!r} is not a number")
    if not amount.is_finite() or amount <= 0:
        raise InvalidInputError("Amount must be positive")
    if amount >= MAX_AMOUNT:
        raise InvalidInputError("Amount is too large")
    try:
        exact = amount == amount.quantize(CENT)
    except ArithmeticError:
        exact = False
    if not exact:
        raise InvalidInputError("Amount must have at most two decimal places")
    return to_money(amount)


def load_user(session: Session, user_id, lock: bool = True) -> User:
    user = session.get(User, user_id, with_for_update=lock)
    if user is None:
        raise NotFoundError(f"User {user_id} not found")
    return user


def debit(user: User, amount: Decimal) -> Decimal:
    if amount > user.balance:
        raise InsufficientFundsError(
            f"Balance {user.balance} is less than {amount}"
        )
    user.balance = to_money(user.balance - amount)
    return user.balance


def credit(user: User, amount: Decimal) -> Decimal:
    user.balance = to_money(user.balance + amount)
    return user.balance
