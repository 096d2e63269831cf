# Overview: Typed error taxonomy for stock and sale operations.

"""
Every failure a stock or sale operation can surface to a caller.

Each error carries a stable machine code and the HTTP status routes answer
with. Raising any of these inside a transaction aborts the whole commit.
"""

from __future__ import annotations


class StockError(Exception):
    """Base class for stock ledger failures."""

    code = "STOCK_ERROR"
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": str(self), "code": self.code, "details": self.details}


class ValidationError(StockError, ValueError):
    """400-level input problem (malformed or non-positive quantity, blank fields)."""

    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(StockError):
    """A referenced site, stall, stock record or sale does not exist."""

    code = "NOT_FOUND"
    status_code = 404


class InsufficientStockError(StockError):
    """The operation would drive a quantity below zero."""

    code = "INSUFFICIENT_STOCK"
    status_code = 409


class InvalidScopeError(StockError):
    """Cross-site or cross-stall rule violation."""

    code = "INVALID_SCOPE"
    status_code = 409


class CrossSiteTransferRejectedError(InvalidScopeError):
    code = "CROSS_SITE_TRANSFER_REJECTED"


class UnlinkedItemError(StockError):
    """The operation needs a master link that the stall record lacks."""

    code = "UNLINKED_ITEM"
    status_code = 409


class InconsistentPropagationError(StockError):
    """A linked master cannot absorb a stall-side change without going negative."""

    code = "INCONSISTENT_PROPAGATION"
    status_code = 409


class LinkedItemsExistError(StockError):
    """A master record cannot be deleted while stall records still link to it."""

    code = "LINKED_ITEMS_EXIST"
    status_code = 409


class PriceMismatchError(StockError):
    """Client-quoted price differs from the stock record (reject policy only)."""

    code = "PRICE_MISMATCH"
    status_code = 409


class SaleStateError(StockError):
    """Illegal sale status transition."""

    code = "SALE_STATE"
    status_code = 409


class ContentionError(StockError):
    """Concurrent writes kept aborting the transaction past the retry bound."""

    code = "CONTENTION"
    status_code = 503
