"""Tests for fine calculation."""

from datetime import date, datetime
from decimal import Decimal

import pytest

from library_circulation.circulation.fines import FineCalculator, FinePolicy, late_days
from library_circulation.models.circulation import ReturnCondition


@pytest.fixture
def calculator() -> FineCalculator:
    return FineCalculator()


class TestFineCalculator:
    """Fines with the standard policy (15.00 damage, 50.00 lost, 0.50/day)."""

    def test_late_good_return(self, calculator):
        fine = calculator.calculate(date(2024, 1, 10), date(2024, 1, 15), ReturnCondition.GOOD)
        assert fine == Decimal("2.50")

    def test_on_time_good_return_is_free(self, calculator):
        fine = calculator.calculate(date(2024, 1, 10), date(2024, 1, 10), ReturnCondition.GOOD)
        assert fine == Decimal("0.00")

    def test_late_damaged_return(self, calculator):
        fine = calculator.calculate(date(2024, 1, 10), date(2024, 1, 15), ReturnCondition.DAMAGED)
        assert fine == Decimal("17.50")

    def test_early_lost_return_charges_only_lost_fee(self, calculator):
        fine = calculator.calculate(date(2024, 1, 10), date(2024, 1, 5), ReturnCondition.LOST)
        assert fine == Decimal("50.00")

    def test_damaged_on_time_charges_flat_fee(self, calculator):
        fine = calculator.calculate(date(2024, 1, 10), date(2024, 1, 9), "DAMAGED")
        assert fine == Decimal("15.00")

    def test_partial_day_rounds_up(self, calculator):
        due = datetime(2024, 1, 10, 12, 0)
        fine = calculator.calculate(due, datetime(2024, 1, 10, 12, 1), ReturnCondition.GOOD)
        assert fine == Decimal("0.50")

        fine = calculator.calculate(due, datetime(2024, 1, 12, 13, 0), ReturnCondition.GOOD)
        assert fine == Decimal("1.50")

    def test_result_has_two_decimal_places(self, calculator):
        fine = calculator.calculate(date(2024, 1, 10), date(2024, 1, 11), ReturnCondition.GOOD)
        assert fine.as_tuple().exponent == -2

    def test_custom_policy(self):
        calculator = FineCalculator(
            FinePolicy(
                damage_fee=Decimal("20"), lost_fee=Decimal("80"), daily_rate=Decimal("0.333")
            )
        )
        fine = calculator.calculate(date(2024, 1, 10), date(2024, 1, 13), ReturnCondition.LOST)
        # 80 + 3 * 0.333 = 80.999, half-up to cents
        assert fine == Decimal("81.00")

    def test_unknown_condition_rejected(self, calculator):
        with pytest.raises(ValueError):
            calculator.calculate(date(2024, 1, 10), date(2024, 1, 10), "SOGGY")


class TestLateDays:
    def test_not_late(self):
        assert late_days(date(2024, 1, 10), date(2024, 1, 1)) == 0
        assert late_days(datetime(2024, 1, 10, 9), datetime(2024, 1, 10, 9)) == 0

    def test_started_days_count(self):
        assert late_days(datetime(2024, 1, 10, 9), datetime(2024, 1, 11, 9)) == 1
        assert late_days(datetime(2024, 1, 10, 9), datetime(2024, 1, 11, 9, 0, 1)) == 2

    def test_dates_are_midnight(self):
        assert late_days(date(2024, 1, 10), datetime(2024, 1, 10, 0, 30)) == 1
