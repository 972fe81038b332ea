"""
Fine calculation for returns.

A fine is a flat fee for the return condition plus a late fee:

- GOOD: no flat fee
- DAMAGED: ``damage_fee``
- LOST: ``lost_fee``
- late fee: every started day past the due date costs ``daily_rate``

The calculator never reads the clock or the database; the engine passes in
both dates.
"""

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal

from pydantic import BaseModel, ConfigDict, Field

from ..dates import late_days
from ..models.circulation import ReturnCondition

CENTS = Decimal("0.01")


class FinePolicy(BaseModel):
    """Fee amounts used by ``FineCalculator``."""

    damage_fee: Decimal = Field(default=Decimal("15.00"), ge=0)
    lost_fee: Decimal = Field(default=Decimal("50.00"), ge=0)
    daily_rate: Decimal = Field(default=Decimal("0.50"), ge=0)

    model_config = ConfigDict(frozen=True)


class FineCalculator:
    """Computes the fine owed for a return."""

    def __init__(self, policy: FinePolicy | None = None):
        self.policy = policy or FinePolicy()

    def calculate(
        self,
        due_date: date | datetime,
        return_date: date | datetime,
        condition: ReturnCondition | str,
    ) -> Decimal:
        """
        Compute the fine for a return.

        >>> FineCalculator().calculate(date(2024, 1, 15), date(2024, 1, 20), "GOOD")
        Decimal('2.50')

        Returns:
            Non-negative amount rounded half-up to cents
        """
        condition = ReturnCondition(condition)

        fine = Decimal("0")
        if condition == ReturnCondition.DAMAGED:
            fine += self.policy.damage_fee
        elif condition == ReturnCondition.LOST:
            fine += self.policy.lost_fee

        fine += late_days(due_date, return_date) * self.policy.daily_rate
        return fine.quantize(CENTS, rounding=ROUND_HALF_UP)
