# backend/ledger_core/schemas/actions.py
"""
Schemas for POST /actions.

The request body is the ActionConfig discriminated union from the
actions service; the `action` field selects the config model.
"""

import datetime as dt

from pydantic import BaseModel, RootModel

from ledger_core.schemas.positions import PositionResponse
from ledger_core.schemas.transactions import TransactionResponse
from ledger_core.services.actions import ActionConfig


class ActionRequest(RootModel[ActionConfig]):
    """One action config, e.g. {"action": "spend", "account": "Wallet", ...}."""


class ActionResponse(BaseModel):
    action: str
    transactions: list[TransactionResponse]
    position: PositionResponse | None = None
    executed_at: dt.datetime
