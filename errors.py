"""
errors.py
Error taxonomy shared by the service modules. Pages catch EduPayError and show the message.
"""

from __future__ import annotations


class EduPayError(Exception):
    """Base class for every error a page can show to the user."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class ValidationError(EduPayError):
    """Missing or invalid input; raised before any store call."""

    def __init__(self, message: str, errors: list[str] | None = None):
        self.errors = errors or [message]
        super().__init__(message)


class DuplicateTransactionError(EduPayError):
    def __init__(self, transaction_id: str, student_name: str | None = None):
        self.transaction_id = transaction_id
        self.student_name = student_name or "another record"
        super().__init__(
            f"Duplicate transaction! ID ({transaction_id}) used for {self.student_name}."
        )


class StoreError(EduPayError):
    """The relational store rejected or failed a read/write."""

    def __init__(self, message: str = "Database error. Check connectivity."):
        super().__init__(message)


class ConstraintError(StoreError):
    """A storage-level constraint (unique index, foreign key, check) rejected a write."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Rejected by the database: {detail}")


class AuthenticationError(EduPayError):
    def __init__(self, message: str = "Invalid credentials."):
        super().__init__(message)


class AuthorizationError(EduPayError):
    def __init__(self, message: str = "Access restricted to administrators."):
        super().__init__(message)
