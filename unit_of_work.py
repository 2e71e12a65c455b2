"""
Unit-of-work boundary for every balance, holdings or price mutation.

A unit of work:
1. acquires in-process locks for the records it touches, always in the global
   order coin -> withdrawal -> user -> portfolio so two requests can never wait
   on each other in a cycle,
2. opens a fresh SQLAlchemy session (rows are then read FOR UPDATE on
   databases that support it),
3. commits everything at once, or rolls everything back.

Version columns on users, coins and portfolio rows catch writers from other
processes that bypassed the in-process locks; those surface as ConflictError.
"""
import logging
import threading
from contextlib import contextmanager
from typing import Callable, Dict, Hashable, Iterator, Tuple

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from errors import ConflictError, ExchangeError, InternalError

logger = logging.getLogger(__name__)

LockKey = Tuple[Hashable, ...]

LOCK_ORDER = {"coin": 0, "withdrawal": 1, "user": 2, "portfolio": 3}


def coin_key(coin_id) -> LockKey:
    return ("coin", coin_id)


def withdrawal_key(withdrawal_id) -> LockKey:
    return ("withdrawal", withdrawal_id)


def user_key(user_id) -> LockKey:
    return ("user", user_id)


def portfolio_key(user_id, coin_id) -> LockKey:
    return ("portfolio", user_id, coin_id)


def _lock_sort_key(key: LockKey):
    return (LOCK_ORDER[key[0]], tuple(str(part) for part in key[1:]))


class KeyedLocks:
    """One mutex per entity key, alive only while someone holds or awaits it."""

    def __init__(self):
        self._guard = threading.Lock()
        # key -> [lock, number of holders and waiters]
        self._locks: Dict[LockKey, list] = {}

    def __len__(self):
        with self._guard:
            return len(self._locks)

    def _checkout(self, key: LockKey) -> threading.Lock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: LockKey) -> None:
        with self._guard:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, keys, timeout: float) -> Iterator[None]:
        ordered = sorted(set(keys), key=_lock_sort_key)
        checked_out = []
        acquired = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                checked_out.append(key)
                if not lock.acquire(timeout=timeout):
                    logger.warning("Lock wait timed out on %s after %.1fs", key, timeout)
                    raise ConflictError(f"{key[0]} is busy, retry the operation")
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            for key in reversed(checked_out):
                self._checkin(key)


def make_session_factory(engine: Engine) -> sessionmaker:
    # Results must stay readable after the unit of work closes its session
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class UnitOfWork:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        locks: KeyedLocks = None,
        lock_timeout: float = 10.0,
    ):
        self.session_factory = session_factory
        self.locks = locks if locks is not None else KeyedLocks()
        self.lock_timeout = lock_timeout

    @contextmanager
    def begin(self, *keys: LockKey) -> Iterator[Session]:
        """Exclusive, atomic access to the records named by ``keys``."""
        with self.locks.hold(keys, self.lock_timeout):
            session = self.session_factory()
            try:
                yield session
                session.commit()
            except ExchangeError:
                session.rollback()
                raise
            except StaleDataError as exc:
                session.rollback()
                logger.warning("Rolled back on stale write: %s", exc)
                raise ConflictError() from exc
            except IntegrityError as exc:
                session.rollback()
                logger.warning("Rolled back on integrity conflict: %s", exc.orig)
                raise ConflictError() from exc
            except SQLAlchemyError as exc:
                session.rollback()
                logger.error("Storage failure, unit of work rolled back", exc_info=True)
                raise InternalError() from exc
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    @contextmanager
    def read(self) -> Iterator[Session]:
        """Lock-free session for queries; never commits."""
        session = self.session_factory()
        try:
            yield session
        except SQLAlchemyError as exc:
            logger.error("Storage failure during read", exc_info=True)
            raise InternalError() from exc
        finally:
            session.close()
