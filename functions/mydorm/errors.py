"""
Error taxonomy shared by the payment, record-store and blob components.
"""

from __future__ import annotations

from typing import Optional


class MyDormError(Exception):
    """Base class for errors surfaced to BFF callers."""


class ConfigurationError(MyDormError):
    """Missing or placeholder configuration. Needs operator action, not a retry."""


class PaymentError(MyDormError):
    """A payment operation failed in transport or at the backend; callers may retry."""

    def __init__(
        self,
        operation: str,
        message: str,
        *,
        status_code: Optional[int] = None,
        timed_out: bool = False,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(f"{operation}: {message}")
        self.operation = operation
        self.status_code = status_code
        self.timed_out = timed_out
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause


class DecodeError(PaymentError):
    """The payment backend answered with a body that does not match the contract."""


class RecordStoreError(MyDormError):
    """A subscription or write against the record store failed."""

    def __init__(
        self,
        operation: str,
        path: str,
        cause: Optional[BaseException] = None,
    ):
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"{operation} {path} failed{detail}")
        self.operation = operation
        self.path = path
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause
