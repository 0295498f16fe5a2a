# Overview: Exception taxonomy shared by services and routes.

"""
Ledger error taxonomy.

Every service raises one of these. Routes translate them into JSON with the
class' status_code; anything else is logged and returned as an opaque 500.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base exception for all ledger operation errors."""
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "details": self.details}


class ValidationError(LedgerError):
    """400-level input problem (missing/invalid fields, over-return)."""
    status_code = 400


class NotFoundError(LedgerError):
    """Referenced product, lot, sale, customer, location or demand does not exist."""
    status_code = 404

    def __init__(self, entity: str, identifier, details: dict | None = None):
        super().__init__(
            f"{entity} {identifier} not found",
            details={"entity": entity, "id": identifier, **(details or {})},
        )
        self.entity = entity
        self.identifier = identifier


class InsufficientStockError(LedgerError):
    """Requested quantity exceeds what the FIFO allocator can find."""
    status_code = 409

    def __init__(self, product_id: int, product_name: str | None, available: int, requested: int):
        name = product_name or f"product {product_id}"
        super().__init__(
            f"Insufficient stock for {name}. Available: {available}, requested: {requested}",
            details={
                "product_id": product_id,
                "product_name": product_name,
                "available": available,
                "requested": requested,
            },
        )
        self.product_id = product_id
        self.available = available
        self.requested = requested


class ConflictError(LedgerError):
    """A sequence or lot update lost a concurrency race (transient)."""
    status_code = 409


class InternalError(LedgerError):
    """Unexpected persistence failure. Message is not shown to API callers."""
    status_code = 500
