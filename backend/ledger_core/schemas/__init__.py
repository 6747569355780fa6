# backend/ledger_core/schemas/__init__.py
"""
Pydantic request/response schemas for the HTTP surface.

Routers import from the specific module:
    from ledger_core.schemas.vaults import VaultCreate, VaultResponse
"""

from ledger_core.schemas.errors import ErrorDetail, ValidationErrorDetail

__all__ = ["ErrorDetail", "ValidationErrorDetail"]
