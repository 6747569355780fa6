# backend/ledger_core/schemas/errors.py
"""
Error response schemas.

Every error carries a stable machine-checkable `kind`:
validation | domain_invariant | not_found | external | rate_limited | internal
"""

from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    """Standard error response format."""

    error: str = Field(..., description="Exception class name (e.g. 'VaultNotFoundError')")
    kind: str = Field(..., description="Stable error category")
    message: str = Field(..., description="Human-readable error message")
    details: dict | None = Field(default=None, description="Additional error context")


class ValidationErrorDetail(BaseModel):
    """Request-shape validation errors (422)."""

    error: str = Field(default="ValidationError")
    kind: str = Field(default="validation")
    message: str = Field(default="Request validation failed")
    details: list[dict] = Field(..., description="List of validation errors")
