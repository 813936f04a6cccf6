"""
Exception hierarchy for the quiz battle engine.
"""
from typing import Optional


class QuizBattleError(Exception):
    """Base exception for quiz battle errors."""
    pass


class FetchTimeoutError(QuizBattleError):
    """Raised when the question pool does not answer within the fetch timeout."""
    pass


class InsufficientDataError(QuizBattleError):
    """Raised when the question pool holds fewer valid questions than requested."""

    def __init__(self, required: int, found: int):
        self.required = required
        self.found = found
        super().__init__(
            f"Not enough valid questions. Required: {required}, Found: {found}"
        )


class PersistenceError(QuizBattleError):
    """Raised when a save, recover, record or profile write fails."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class InvalidStateError(QuizBattleError):
    """Raised when an operation is attempted in a state that forbids it."""
    pass


class BattleStateError(InvalidStateError):
    """Raised when the battle session is internally inconsistent."""
    pass


class InsufficientFundsError(QuizBattleError):
    """Raised when a coin debit exceeds the current balance."""

    def __init__(self, balance: int, requested: int):
        self.balance = balance
        self.requested = requested
        super().__init__(
            f"Insufficient coins: balance {balance}, requested {requested}"
        )


class ItemNotFoundError(QuizBattleError):
    """Raised when an item is not in the inventory or store catalog."""
    pass


class ItemNotEquippedError(QuizBattleError):
    """Raised when using the effect of an item that is not equipped."""
    pass
