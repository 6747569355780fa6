# backend/ledger_core/services/transactions/__init__.py
"""
Ledger transactions: the derived-field calculator and the write path.

Usage:
    from ledger_core.services.transactions import compute_derived_fields
    from ledger_core.services.transactions import TransactionService, TransactionInput
"""

from ledger_core.services.transactions.derived import (
    DerivedFields,
    compute_cashflow_local,
    compute_delta_qty,
    compute_derived_fields,
    validate_transaction_input,
)
from ledger_core.services.transactions.service import (
    TransactionFilter,
    TransactionInput,
    TransactionService,
)

__all__ = [
    "DerivedFields",
    "compute_cashflow_local",
    "compute_delta_qty",
    "compute_derived_fields",
    "validate_transaction_input",
    "TransactionFilter",
    "TransactionInput",
    "TransactionService",
]
