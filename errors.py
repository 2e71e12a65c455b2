class ExchangeError(Exception):
    """Base class for every failure the exchange core reports to callers."""

    kind = "internal"
    status_code = 500

    def __init__(self, message=None):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__

    def to_dict(self):
        return {"status": "error", "kind": self.kind, "message": self.message}


class NotFoundError(ExchangeError):
    """Record not found"""

    kind = "not_found"
    status_code = 404


class InsufficientFundsError(ExchangeError):
    """Insufficient balance"""

    kind = "insufficient_funds"
    status_code = 400


class InsufficientHoldingsError(ExchangeError):
    """Insufficient holdings"""

    kind = "insufficient_holdings"
    status_code = 400


class InvalidInputError(ExchangeError):
    """Invalid input"""

    kind = "invalid_input"
    status_code = 400


class InvalidStateError(ExchangeError):
    """Invalid state transition"""

    kind = "invalid_state"
    status_code = 409


class ConflictError(ExchangeError):
    """Concurrent modification detected, retry the operation"""

    kind = "conflict"
    status_code = 409


class InternalError(ExchangeError):
    """Internal storage error"""

    kind = "internal"
    status_code = 500
