# backend/tests/services/test_vault_pricing.py
"""
Unit tests for vault share pricing and the holder share ledger.

These tests verify the pure calculation logic WITHOUT database dependencies.

Test Coverage:
- Market mode: AUM / supply, empty vault, valuation guard
- Manual mode: enable, direct price, relative-growth total value, disable
- Share ledger: mint/burn weighted-average cost and realized P&L
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

import pytest

from ledger_core.services.exceptions import (
    InsufficientSharesError,
    NegativePriceError,
    PricingModeError,
    ValidationError,
)
from ledger_core.services.vaults import pricing
from ledger_core.services.vaults.shares import burn_shares, mark_to_market, mint_shares, total_return


# =============================================================================
# MOCK OBJECTS (No database needed)
# =============================================================================

@dataclass
class MockVault:
    """Plain object with the Vault pricing columns."""
    id: int = 1
    total_supply: Decimal = Decimal("0")
    total_assets_under_management: Decimal = Decimal("0")
    current_share_price: Decimal = Decimal("1")
    initial_share_price: Decimal = Decimal("1")
    high_watermark: Decimal = Decimal("1")
    is_user_defined_price: bool = False
    manual_price_per_share: Decimal | None = None
    manual_pricing_reference_aum: Decimal | None = None
    manual_pricing_reference_price: Decimal | None = None
    price_last_updated_by: str | None = None
    price_last_updated_at: datetime | None = None
    price_update_notes: str | None = None


@dataclass
class MockHolding:
    share_balance: Decimal = Decimal("0")
    cost_basis: Decimal = Decimal("0")
    avg_cost_per_share: Decimal = Decimal("0")
    total_deposits: Decimal = Decimal("0")
    total_withdrawals: Decimal = Decimal("0")
    net_deposits: Decimal = Decimal("0")
    current_market_value: Decimal = Decimal("0")
    unrealized_pnl: Decimal = Decimal("0")
    unrealized_pnl_percent: Decimal = Decimal("0")
    realized_pnl: Decimal = Decimal("0")
    first_deposit_date: date | None = None
    last_activity_date: date | None = None


@pytest.fixture
def manual_vault() -> MockVault:
    """100 shares, manual mode at the initial price of 1."""
    vault = MockVault(total_supply=Decimal("100"), total_assets_under_management=Decimal("100"))
    pricing.enable_manual_pricing(vault, Decimal("1"), "alice")
    return vault


# =============================================================================
# MARKET MODE
# =============================================================================

class TestMarketMode:
    """Tests for AUM-derived share price."""

    def test_price_is_aum_over_supply(self):
        vault = MockVault(total_supply=Decimal("200"), total_assets_under_management=Decimal("250"))
        assert pricing.market_share_price(vault) == Decimal("1.25")

    def test_empty_vault_uses_initial_price(self):
        vault = MockVault(initial_share_price=Decimal("10"))
        assert pricing.market_share_price(vault) == Decimal("10")

    def test_valuation_updates_price_and_watermark(self):
        vault = MockVault(total_supply=Decimal("100"), total_assets_under_management=Decimal("100"))
        pricing.apply_market_valuation(vault, Decimal("150"))

        assert vault.current_share_price == Decimal("1.5")
        assert vault.high_watermark == Decimal("1.5")

        pricing.apply_market_valuation(vault, Decimal("120"))
        assert vault.current_share_price == Decimal("1.2")
        assert vault.high_watermark == Decimal("1.5")

    def test_valuation_rejected_in_manual_mode(self, manual_vault):
        with pytest.raises(PricingModeError):
            pricing.apply_market_valuation(manual_vault, Decimal("500"))
        assert manual_vault.total_assets_under_management == Decimal("100")

    def test_shares_for_amount(self):
        vault = MockVault(current_share_price=Decimal("2"))
        assert pricing.shares_for_amount(vault, Decimal("50")) == Decimal("25")

    def test_performance_since_inception(self):
        vault = MockVault(current_share_price=Decimal("1.1"))
        assert pricing.performance_since_inception(vault) == Decimal("10.0")


# =============================================================================
# MANUAL MODE
# =============================================================================

class TestEnableManualPricing:
    """Tests for switching to manual mode."""

    def test_enable_sets_price_and_aum(self):
        vault = MockVault(total_supply=Decimal("40"), total_assets_under_management=Decimal("10"))
        pricing.enable_manual_pricing(vault, Decimal("2"), "alice", notes="appraisal")

        assert vault.is_user_defined_price is True
        assert vault.manual_price_per_share == Decimal("2")
        assert vault.total_assets_under_management == Decimal("80")
        assert vault.price_last_updated_by == "alice"
        assert vault.price_last_updated_at is not None
        assert vault.price_update_notes == "appraisal"

    @pytest.mark.parametrize("price", ["0", "-1"])
    def test_enable_requires_positive_price(self, price):
        vault = MockVault()
        with pytest.raises(ValidationError):
            pricing.enable_manual_pricing(vault, Decimal(price), "alice")
        assert vault.is_user_defined_price is False

    def test_enable_requires_actor(self):
        with pytest.raises(ValidationError):
            pricing.enable_manual_pricing(MockVault(), Decimal("1"), "")


class TestUpdateManualPrice:
    """Tests for declaring the price directly."""

    def test_sets_price_and_recomputes_aum(self, manual_vault):
        pricing.update_manual_price(manual_vault, Decimal("1.3"), "bob", "mark")

        assert manual_vault.current_share_price == Decimal("1.3")
        assert manual_vault.total_assets_under_management == Decimal("130.0")
        assert manual_vault.price_last_updated_by == "bob"

    def test_zero_price_allowed(self, manual_vault):
        pricing.update_manual_price(manual_vault, Decimal("0"), "bob")
        assert manual_vault.total_assets_under_management == Decimal("0")

    def test_negative_price_rejected(self, manual_vault):
        with pytest.raises(NegativePriceError) as exc_info:
            pricing.update_manual_price(manual_vault, Decimal("-0.5"), "bob")
        assert exc_info.value.rule == "price_non_negative"
        assert manual_vault.current_share_price == Decimal("1")


class TestUpdateManualTotalValue:
    """Tests for the relative-growth algorithm."""

    def test_first_call_seeds_baseline(self, manual_vault):
        """The first declared value is a baseline, not growth."""
        price = pricing.update_manual_total_value(manual_vault, Decimal("100"), Decimal("100"), "alice")

        assert price == Decimal("1")
        assert manual_vault.manual_pricing_reference_aum == Decimal("100")

    def test_growth_scenario(self, manual_vault):
        """(100, 100) then (120, 0): price becomes 1.2 × initial."""
        pricing.update_manual_total_value(manual_vault, Decimal("100"), Decimal("100"), "alice")
        price = pricing.update_manual_total_value(manual_vault, Decimal("120"), Decimal("0"), "alice")

        assert price == Decimal("1.2")
        assert manual_vault.current_share_price == Decimal("1.2")
        assert manual_vault.manual_pricing_reference_aum == Decimal("120")
        assert manual_vault.total_assets_under_management == Decimal("120")

    def test_growth_scales_non_unit_initial_price(self):
        vault = MockVault(initial_share_price=Decimal("10"), current_share_price=Decimal("10"))
        pricing.enable_manual_pricing(vault, Decimal("10"), "alice")
        pricing.update_manual_total_value(vault, Decimal("100"), Decimal("100"), "alice")

        assert pricing.update_manual_total_value(vault, Decimal("120"), Decimal("0"), "alice") == Decimal("12.0")

    def test_repeated_value_is_idempotent(self, manual_vault):
        """Same value twice with zero delta: growth factor is 1 on the second call."""
        pricing.update_manual_total_value(manual_vault, Decimal("100"), Decimal("0"), "alice")
        first = pricing.update_manual_total_value(manual_vault, Decimal("130"), Decimal("0"), "alice")
        second = pricing.update_manual_total_value(manual_vault, Decimal("130"), Decimal("0"), "alice")

        assert first == second == Decimal("1.3")

    def test_capital_neutral_withdrawal(self, manual_vault):
        """Value drops by exactly the withdrawal: price unchanged."""
        pricing.update_manual_total_value(manual_vault, Decimal("100"), Decimal("0"), "alice")
        pricing.update_manual_total_value(manual_vault, Decimal("150"), Decimal("0"), "alice")
        before = manual_vault.current_share_price

        after = pricing.update_manual_total_value(manual_vault, Decimal("110"), Decimal("-40"), "alice")

        assert after == before == Decimal("1.5")

    def test_capital_neutral_deposit(self, manual_vault):
        """New capital does not read as a gain."""
        pricing.update_manual_total_value(manual_vault, Decimal("100"), Decimal("0"), "alice")
        price = pricing.update_manual_total_value(manual_vault, Decimal("160"), Decimal("50"), "alice")

        # Only the 10 above the 150 of capital counts as growth
        assert price == Decimal("160") / Decimal("150")

    def test_withdrawal_with_organic_loss(self, manual_vault):
        pricing.update_manual_total_value(manual_vault, Decimal("100"), Decimal("0"), "alice")
        price = pricing.update_manual_total_value(manual_vault, Decimal("45"), Decimal("-50"), "alice")

        assert price == Decimal("0.9")

    @pytest.mark.parametrize("value", ["0", "-10"])
    def test_non_positive_value_rejected(self, manual_vault, value):
        with pytest.raises(ValidationError):
            pricing.update_manual_total_value(manual_vault, Decimal(value), Decimal("0"), "alice")
        assert manual_vault.manual_pricing_reference_aum is None

    def test_requires_manual_mode(self):
        with pytest.raises(PricingModeError):
            pricing.update_manual_total_value(MockVault(), Decimal("100"), Decimal("0"), "alice")

    def test_adjusted_reference_must_be_positive(self, manual_vault):
        pricing.update_manual_total_value(manual_vault, Decimal("100"), Decimal("0"), "alice")
        with pytest.raises(ValidationError) as exc_info:
            pricing.update_manual_total_value(manual_vault, Decimal("10"), Decimal("-100"), "alice")

        assert exc_info.value.field == "net_contribution_delta"
        assert manual_vault.manual_pricing_reference_aum == Decimal("100")


class TestDisableManualPricing:
    def test_disable_clears_manual_fields(self, manual_vault):
        pricing.update_manual_total_value(manual_vault, Decimal("100"), Decimal("0"), "alice")
        pricing.disable_manual_pricing(manual_vault, "alice")

        assert manual_vault.is_user_defined_price is False
        assert manual_vault.manual_price_per_share is None
        assert manual_vault.manual_pricing_reference_aum is None
        assert manual_vault.manual_pricing_reference_price is None
        assert manual_vault.price_last_updated_by is None

    def test_market_valuation_allowed_after_disable(self, manual_vault):
        pricing.disable_manual_pricing(manual_vault, "alice")
        pricing.apply_market_valuation(manual_vault, Decimal("300"))
        assert manual_vault.current_share_price == Decimal("3")

    def test_re_enable_seeds_a_fresh_baseline(self, manual_vault):
        pricing.update_manual_total_value(manual_vault, Decimal("100"), Decimal("0"), "alice")
        pricing.disable_manual_pricing(manual_vault, "alice")
        pricing.enable_manual_pricing(manual_vault, Decimal("2"), "alice")

        assert pricing.update_manual_total_value(manual_vault, Decimal("500"), Decimal("0"), "alice") == Decimal("2")


# =============================================================================
# SHARE LEDGER
# =============================================================================

class TestShareLedger:
    """Tests for per-holder mint/burn bookkeeping."""

    def test_mint_weighted_average(self):
        holding = MockHolding()
        mint_shares(holding, Decimal("100"), Decimal("1"), date(2024, 1, 1))
        mint_shares(holding, Decimal("50"), Decimal("1.6"), date(2024, 2, 1))

        assert holding.share_balance == Decimal("150")
        assert holding.cost_basis == Decimal("180.0")
        assert holding.avg_cost_per_share == Decimal("1.2")
        assert holding.first_deposit_date == date(2024, 1, 1)
        assert holding.last_activity_date == date(2024, 2, 1)

    def test_burn_realizes_pnl(self):
        holding = MockHolding()
        mint_shares(holding, Decimal("100"), Decimal("1"))

        result = burn_shares(holding, Decimal("40"), Decimal("1.5"))

        assert result.proceeds == Decimal("60.0")
        assert result.cost_basis == Decimal("40")
        assert result.realized_pnl == Decimal("20.0")
        assert holding.share_balance == Decimal("60")
        assert holding.avg_cost_per_share == Decimal("1")
        assert holding.realized_pnl == Decimal("20.0")

    def test_burn_more_than_balance(self):
        holding = MockHolding()
        mint_shares(holding, Decimal("10"), Decimal("1"))

        with pytest.raises(InsufficientSharesError):
            burn_shares(holding, Decimal("11"), Decimal("1"))
        assert holding.share_balance == Decimal("10")

    def test_full_exit_clears_cost_basis(self):
        holding = MockHolding()
        mint_shares(holding, Decimal("3"), Decimal("0.3333"))
        burn_shares(holding, Decimal("3"), Decimal("0.5"))
        assert holding.cost_basis == Decimal("0")

    def test_mark_to_market_and_total_return(self):
        holding = MockHolding()
        mint_shares(holding, Decimal("100"), Decimal("1"))
        burn_shares(holding, Decimal("50"), Decimal("1.2"))
        mark_to_market(holding, Decimal("1.2"))

        assert holding.current_market_value == Decimal("60.0")
        assert holding.unrealized_pnl == Decimal("10.0")
        assert holding.unrealized_pnl_percent == Decimal("20")
        # (60 + 60 - 100) / 100
        assert total_return(holding) == Decimal("20")

    @pytest.mark.parametrize("shares", ["0", "-1"])
    def test_mint_requires_positive_shares(self, shares):
        with pytest.raises(ValidationError):
            mint_shares(MockHolding(), Decimal(shares), Decimal("1"))
