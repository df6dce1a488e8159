"""Tests for the fine calculation policy."""

from datetime import date
from decimal import Decimal

import pytest

from circulation_engine.config import EngineConfig
from circulation_engine.models.borrow import PenaltyType
from circulation_engine.models.penalty import PenaltyPolicy, calculate_penalty, to_money

AS_OF = date(2026, 3, 10)


@pytest.fixture
def policy() -> PenaltyPolicy:
    return PenaltyPolicy()


def quote(policy, mrp="500.00", overdue_days=0, damaged=False, lost=False):
    return calculate_penalty(
        mrp=Decimal(mrp) if mrp is not None else None,
        overdue_days=overdue_days,
        damaged=damaged,
        lost=lost,
        policy=policy,
        as_of=AS_OF,
    )


class TestToMoney:
    def test_rounds_half_up_to_cents(self):
        assert to_money(Decimal("1.005")) == Decimal("1.01")
        assert to_money(Decimal("1.004")) == Decimal("1.00")
        assert to_money(3) == Decimal("3.00")
        assert to_money("0.1") == Decimal("0.10")


class TestLateFees:
    def test_three_days_late_on_500_mrp(self, policy):
        """10% of MRP per day: 50.00 a day, 150.00 for three days."""
        result = quote(policy, overdue_days=3)

        assert result.daily_rate == Decimal("50.00")
        assert result.late_amount == Decimal("150.00")
        assert result.total == Decimal("150.00")
        assert result.penalty_type == PenaltyType.LATE

    def test_on_time_has_no_penalty(self, policy):
        result = quote(policy, overdue_days=0)

        assert result.total == Decimal("0.00")
        assert result.penalty_type == PenaltyType.NONE

    def test_fee_grows_linearly(self, policy):
        totals = [quote(policy, overdue_days=d).total for d in (1, 2, 10)]
        assert totals == [Decimal("50.00"), Decimal("100.00"), Decimal("500.00")]

    def test_unknown_mrp_accrues_nothing(self, policy):
        result = quote(policy, mrp=None, overdue_days=30)

        assert result.mrp_known is False
        assert result.daily_rate is None
        assert result.total == Decimal("0.00")
        assert result.penalty_type == PenaltyType.NONE

    def test_odd_mrp_rounds_per_day_rate(self, policy):
        result = quote(policy, mrp="199.95", overdue_days=2)
        # 19.995 -> 20.00 a day
        assert result.daily_rate == Decimal("20.00")
        assert result.total == Decimal("40.00")

    def test_negative_overdue_days_rejected(self, policy):
        with pytest.raises(ValueError, match="negative"):
            quote(policy, overdue_days=-1)


class TestReplacementCosts:
    def test_damaged_on_time_charges_mrp(self, policy):
        result = quote(policy, damaged=True)

        assert result.replacement_amount == Decimal("500.00")
        assert result.total == Decimal("500.00")
        assert result.penalty_type == PenaltyType.DAMAGE

    def test_lost_and_late_adds_both(self, policy):
        result = quote(policy, overdue_days=2, lost=True)

        assert result.late_amount == Decimal("100.00")
        assert result.replacement_amount == Decimal("500.00")
        assert result.total == Decimal("600.00")
        assert result.penalty_type == PenaltyType.LOST

    def test_lost_takes_precedence_over_damaged(self, policy):
        assert quote(policy, damaged=True, lost=True).penalty_type == PenaltyType.LOST

    def test_flat_fee_when_mrp_unknown(self):
        policy = PenaltyPolicy(lost_flat_fee=Decimal("250.00"), damage_flat_fee=Decimal("80.00"))

        assert quote(policy, mrp=None, lost=True).total == Decimal("250.00")
        assert quote(policy, mrp=None, damaged=True).total == Decimal("80.00")

    def test_damage_without_any_tariff_is_no_penalty(self, policy):
        result = quote(policy, mrp=None, damaged=True)
        assert result.total == Decimal("0.00")
        assert result.penalty_type == PenaltyType.NONE


class TestPolicyFromConfig:
    def test_reads_rates_from_config(self, tmp_path):
        config = EngineConfig(
            database_path=tmp_path / "c.db",
            late_fee_rate=Decimal("0.02"),
            lost_replacement_factor=Decimal("1.5"),
        )
        policy = PenaltyPolicy.from_config(config)

        assert policy.daily_rate(Decimal("500")) == Decimal("10.00")
        assert policy.replacement_cost(PenaltyType.LOST, Decimal("500")) == Decimal("750.00")
        assert policy.replacement_cost(PenaltyType.LATE, Decimal("500")) == Decimal("0.00")
