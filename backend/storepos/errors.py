# Overview: Error taxonomy shared by services and routes.

from __future__ import annotations


class PosError(Exception):
    """Base for failures reported to callers as a failure envelope."""

    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(PosError, ValueError):
    """Malformed input, rejected before any persistence attempt."""


class NotFoundError(PosError):
    """A referenced product, customer, bill or user does not exist."""

    status_code = 404


class ConflictError(PosError):
    """Unique-constraint or business-rule conflict."""

    status_code = 409


class DuplicateBillNumberError(ConflictError):
    """Generated bill number already taken; retried with a fresh number."""


class InsufficientStockError(ConflictError):
    """Stock change would take a product below zero."""


class CreditLimitExceededError(ConflictError):
    """Extending credit would push a customer past their credit limit."""


class OverpaymentError(ConflictError):
    """Credit payment larger than the customer's outstanding credit."""


class TransactionError(PosError):
    """Persistence failure inside a unit of work; nothing was committed."""

    status_code = 500
