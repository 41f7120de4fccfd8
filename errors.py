from typing import Iterable


class FinanceError(ValueError):
    pass


class ValidationError(FinanceError):
    def __init__(self, fields: Iterable[str], message: str = "") -> None:
        self.fields = sorted(set(fields))
        super().__init__(message or f"Invalid fields: {', '.join(self.fields)}")


class NotFoundError(FinanceError):
    pass


class RangeError(FinanceError):
    pass


class ConflictError(FinanceError):
    pass


class UnauthorizedError(FinanceError):
    pass
