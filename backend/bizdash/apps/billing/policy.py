# backend/bizdash/apps/billing/policy.py
"""
Plan policy: pure business rules, no I/O.

The policy is an immutable value so alternate pricing / trial regimes can
be injected (tests, promotions) instead of patching module constants.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Mapping

from .models import Plan, ProrationBehavior


DEFAULT_FREE_COMMISSION_RATE = Decimal("0.05")
DEFAULT_TRIAL_DAYS = 14
DEFAULT_PLAN_RANKS: Mapping[Plan, int] = {
    Plan.FREE: 0,
    Plan.STARTER: 1,
    Plan.PRO: 2,
}


@dataclass(frozen=True)
class PlanPolicy:
    free_commission_rate: Decimal = DEFAULT_FREE_COMMISSION_RATE
    trial_days: int = DEFAULT_TRIAL_DAYS
    plan_ranks: Mapping[Plan, int] = field(default_factory=lambda: dict(DEFAULT_PLAN_RANKS))

    def rank(self, plan: Plan) -> int:
        return self.plan_ranks[Plan(plan)]

    def commission_rate_for(self, plan: Plan) -> Decimal:
        """Free tenants pay the platform commission; paid plans pay none."""
        if Plan(plan) == Plan.FREE:
            return self.free_commission_rate
        return Decimal("0")

    def is_upgrade(self, current_plan: Plan, target_plan: Plan) -> bool:
        return self.rank(target_plan) > self.rank(current_plan)

    def proration_behavior_for(
        self, current_plan: Plan, target_plan: Plan
    ) -> ProrationBehavior:
        """
        Upgrades are prorated immediately; same-rank and downgrade
        transitions take effect without proration.
        """
        if self.is_upgrade(current_plan, target_plan):
            return ProrationBehavior.CREATE_PRORATIONS
        return ProrationBehavior.NONE

    def is_trial_eligible(self, history: Iterable[object]) -> bool:
        """A tenant gets a trial only if it has never activated a paid plan."""
        for _ in history:
            return False
        return True


DEFAULT_POLICY = PlanPolicy()
