# backend/ledger_core/schemas/prices.py
"""Pydantic schemas for price mappings, backfill jobs and quotes."""

import datetime as dt
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ledger_core.models import PopulationStatus, PriceProvider


class ApiConfig(BaseModel):
    """HTTP provider settings. Values may reference ${ENV_VARS}."""

    method: Literal["GET", "POST"] = "GET"
    headers: dict[str, str] | None = None
    auth_type: Literal["bearer", "apikey"] | None = None
    auth_value: str | None = None
    query_params: dict[str, Any] | None = None

    @model_validator(mode="after")
    def auth_pair(self) -> "ApiConfig":
        if self.auth_type and not self.auth_value:
            raise ValueError("auth_value is required when auth_type is set")
        return self


class PriceMappingCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    asset: str = Field(..., min_length=1, max_length=50, examples=["BTC"])
    provider: PriceProvider
    provider_id: str = Field(..., min_length=1, max_length=100, examples=["bitcoin", "BTC-USD"])
    quote_currency: str = Field(default="USD", min_length=3, max_length=10)
    api_endpoint: str | None = Field(
        default=None,
        examples=["https://api.example.com/history/{provider_id}?date={date_ddmmyyyy}&vs={currency_lower}"],
    )
    api_config: ApiConfig | None = None
    response_path: str | None = Field(default=None, examples=["market_data.current_price.usd"])
    auto_populate: bool = False
    populate_from_date: dt.date | None = None

    @field_validator("asset", "quote_currency")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()


class PriceMappingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    asset_id: int
    provider: PriceProvider
    provider_id: str
    quote_currency: str
    api_endpoint: str | None
    response_path: str | None
    auto_populate: bool
    populate_from_date: dt.date | None
    last_populated_date: dt.date | None
    is_active: bool


class BackfillCreate(BaseModel):
    asset_id: int = Field(..., gt=0)
    mapping_id: int = Field(..., gt=0)
    start_date: dt.date
    end_date: dt.date

    @model_validator(mode="after")
    def ordered(self) -> "BackfillCreate":
        if self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class BackfillJobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    asset_id: int
    mapping_id: int
    status: PopulationStatus
    start_date: dt.date
    end_date: dt.date
    current_date: dt.date | None
    total_days: int
    completed_days: int
    skipped_days: int
    error_message: str | None
    created_by: str
    created_at: dt.datetime
    started_at: dt.datetime | None
    completed_at: dt.datetime | None


class PriceMappingCreated(BaseModel):
    mapping: PriceMappingResponse
    job: BackfillJobResponse | None = None


class QuoteResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    symbol: str
    currency: str
    price: Decimal
    source: str
    as_of: dt.date | None
    is_exact: bool
