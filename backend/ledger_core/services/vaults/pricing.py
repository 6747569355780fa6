# backend/ledger_core/services/vaults/pricing.py
"""
Share-price arithmetic for a vault.

Two mutually exclusive pricing modes, switched only by
enable_manual_pricing() / disable_manual_pricing():

Market mode:
    share_price = AUM / total_supply   (initial_share_price when supply is 0)

Manual mode:
    The operator declares either the price (update_manual_price) or the
    vault's total value (update_manual_total_value). The total-value form
    uses the relative-growth rule:

        adjusted_reference = reference_aum + net_contribution_delta
        growth             = new_total_value / adjusted_reference
        new_price          = prior_price × growth
        reference_aum      = new_total_value

    Capital moving in or out (net_contribution_delta) is removed from the
    comparison, so a withdrawal does not read as a loss and a deposit does
    not read as a gain. The first call only seeds the reference.

Every function validates before it writes; a raised error leaves the
vault unchanged. Functions operate on any object exposing the Vault
columns, so tests can use a plain dataclass.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal

from ledger_core.services.constants import HUNDRED, ZERO
from ledger_core.services.exceptions import NegativePriceError, PricingModeError, ValidationError

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# MARKET MODE
# =============================================================================

def market_share_price(vault) -> Decimal:
    """AUM / supply, or the initial share price for an empty vault."""
    if not vault.total_supply or vault.total_supply == ZERO:
        return vault.initial_share_price
    return vault.total_assets_under_management / vault.total_supply


def effective_price(vault) -> Decimal:
    """The manual price when manual mode is on with a positive price, else the current price."""
    if vault.is_user_defined_price and vault.manual_price_per_share and vault.manual_price_per_share > ZERO:
        return vault.manual_price_per_share
    return vault.current_share_price


def shares_for_amount(vault, amount: Decimal) -> Decimal:
    price = effective_price(vault)
    if not price or price == ZERO:
        return ZERO
    return amount / price


def apply_market_valuation(vault, aum: Decimal) -> None:
    """
    Set AUM and re-derive the share price (market mode only).

    Raises:
        ValidationError: aum < 0
        PricingModeError: Vault is manually priced
    """
    if aum is None or aum < ZERO:
        raise ValidationError("AUM cannot be negative", field="total_value")
    if vault.is_user_defined_price:
        raise PricingModeError(
            getattr(vault, "id", None),
            "manual",
            "Market valuation is not allowed while manual pricing is enabled",
        )

    vault.total_assets_under_management = aum
    vault.current_share_price = market_share_price(vault)
    _track_high_watermark(vault)


def performance_since_inception(vault) -> Decimal:
    """(current - initial) / initial × 100"""
    initial = vault.initial_share_price
    if not initial or initial == ZERO:
        return ZERO
    return (effective_price(vault) - initial) / initial * HUNDRED


# =============================================================================
# MANUAL MODE
# =============================================================================

def enable_manual_pricing(vault, initial_price: Decimal, actor: str, notes: str | None = None) -> None:
    """
    Switch to manual mode at initial_price.

    AUM becomes supply × price. The relative-growth reference price is set
    to initial_price and the reference AUM is cleared, so the next total
    value update seeds a fresh baseline.

    Raises:
        ValidationError: initial_price <= 0 or no actor
    """
    if initial_price is None or initial_price <= ZERO:
        raise ValidationError("initial price must be positive", field="price")
    _require_actor(actor)

    vault.is_user_defined_price = True
    vault.manual_price_per_share = initial_price
    vault.current_share_price = initial_price
    vault.manual_pricing_reference_price = initial_price
    vault.manual_pricing_reference_aum = None
    vault.total_assets_under_management = (vault.total_supply or ZERO) * initial_price
    _stamp(vault, actor, notes)
    _track_high_watermark(vault)


def update_manual_price(vault, new_price: Decimal, actor: str, notes: str | None = None) -> None:
    """
    Declare a new share price directly; AUM is recomputed from supply.

    Raises:
        ValidationError: Missing price or no actor
        NegativePriceError: new_price < 0
    """
    if new_price is None:
        raise ValidationError("price is required", field="price")
    if new_price < ZERO:
        raise NegativePriceError(new_price)
    _require_actor(actor)

    vault.is_user_defined_price = True
    vault.manual_price_per_share = new_price
    vault.current_share_price = new_price
    vault.manual_pricing_reference_price = new_price
    vault.total_assets_under_management = (vault.total_supply or ZERO) * new_price
    _stamp(vault, actor, notes)
    _track_high_watermark(vault)


def update_manual_total_value(
        vault,
        new_total_value: Decimal,
        net_contribution_delta: Decimal,
        actor: str,
        notes: str | None = None,
) -> Decimal:
    """
    Declare the vault's total value and derive the price by relative growth.

    First call (no reference AUM yet): the reference AUM is seeded with
    new_total_value and the price is the reference price (initial share
    price by default). Later calls scale the prior price by
    new_total_value / (reference_aum + net_contribution_delta).

    Returns:
        The resulting share price

    Raises:
        ValidationError: new_total_value <= 0, adjusted reference <= 0, or no actor
        PricingModeError: Manual pricing is not enabled
    """
    if new_total_value is None or new_total_value <= ZERO:
        raise ValidationError("total value must be positive", field="total_value")
    _require_actor(actor)
    if not vault.is_user_defined_price:
        raise PricingModeError(
            getattr(vault, "id", None),
            "market",
            "Manual pricing must be enabled before updating total value",
        )

    delta = net_contribution_delta or ZERO
    reference_aum = vault.manual_pricing_reference_aum

    if reference_aum is None or reference_aum <= ZERO:
        new_price = vault.manual_pricing_reference_price or vault.initial_share_price
        logger.debug(f"Seeding manual pricing baseline: aum={new_total_value}, price={new_price}")
    else:
        adjusted = reference_aum + delta
        if adjusted <= ZERO:
            raise ValidationError(
                f"Capital-adjusted reference value must be positive, got {adjusted}",
                field="net_contribution_delta",
            )
        prior_price = effective_price(vault)
        new_price = prior_price * (new_total_value / adjusted)

    vault.manual_price_per_share = new_price
    vault.current_share_price = new_price
    vault.manual_pricing_reference_price = new_price
    vault.manual_pricing_reference_aum = new_total_value
    vault.total_assets_under_management = new_total_value
    _stamp(vault, actor, notes)
    _track_high_watermark(vault)
    return new_price


def disable_manual_pricing(vault, actor: str) -> None:
    """
    Leave manual mode. The vault reverts to market-derived pricing on the
    next valuation; AUM and current price are left as they are.
    """
    _require_actor(actor)
    vault.is_user_defined_price = False
    vault.manual_price_per_share = None
    vault.manual_pricing_reference_aum = None
    vault.manual_pricing_reference_price = None
    vault.price_last_updated_by = None
    vault.price_last_updated_at = None
    vault.price_update_notes = None


# =============================================================================
# HELPERS
# =============================================================================

def _require_actor(actor: str | None) -> None:
    if not actor:
        raise ValidationError("actor is required", field="actor")


def _stamp(vault, actor: str, notes: str | None) -> None:
    vault.price_last_updated_by = actor
    vault.price_last_updated_at = _now()
    vault.price_update_notes = notes


def _track_high_watermark(vault) -> None:
    price = vault.current_share_price
    if price is not None and (vault.high_watermark is None or price > vault.high_watermark):
        vault.high_watermark = price
