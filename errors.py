"""Domain errors raised by the envelope services.

Validation failures subclass ``ValueError`` so callers can treat every bad
input the same way; storage failures are wrapped in ``StorageFailure``.
"""

from typing import Optional


class NotFound(ValueError):
    pass


class EnvelopeNotFound(NotFound):
    def __init__(self, name: object) -> None:
        self.name = str(name)
        super().__init__(f"Envelope not found: {self.name}")


class ProductNotFound(NotFound):
    def __init__(self, name: object) -> None:
        self.name = str(name)
        super().__init__(f"Product not found: {self.name}")


class TransactionNotFound(NotFound):
    def __init__(self, transaction_id: object) -> None:
        self.transaction_id = transaction_id
        super().__init__(f"Transaction not found: {transaction_id}")


class InvalidAmount(ValueError):
    def __init__(self, amount: float, reason: Optional[str] = None) -> None:
        self.amount = amount
        message = f"Invalid amount: {amount}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class InsufficientFunds(ValueError):
    def __init__(self, current: float, required: float) -> None:
        self.current = current
        self.required = required
        super().__init__(
            f"Insufficient funds: envelope has {current}, need {required}"
        )


class ConfigError(ValueError):
    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Configuration error: {message}")


class EnvelopeExists(ValueError):
    pass


class ProductExists(ValueError):
    pass


class StorageFailure(RuntimeError):
    pass
