"""Static plan catalog: quota limits per subscription plan."""

from typing import NamedTuple

from shelfpass.models import PLAN_BASIC, PLAN_PREMIUM, ACTION_READ, ACTION_DOWNLOAD

PAID_PLANS = (PLAN_BASIC, PLAN_PREMIUM)


class PlanLimits(NamedTuple):
    max_reads: int
    max_downloads: int

    @property
    def is_empty(self) -> bool:
        return self.max_reads == 0 and self.max_downloads == 0

    def limit_for(self, action: str) -> int:
        if action == ACTION_READ:
            return self.max_reads
        if action == ACTION_DOWNLOAD:
            return self.max_downloads
        raise ValueError(f"Unknown action: {action}")


NO_LIMITS = PlanLimits(max_reads=0, max_downloads=0)

PLAN_LIMITS = {
    PLAN_BASIC: PlanLimits(max_reads=10, max_downloads=5),
    PLAN_PREMIUM: PlanLimits(max_reads=100, max_downloads=25),
}


def limits_for(plan) -> PlanLimits:
    """Limits for a plan; unknown plans and 'none' get nothing."""
    return PLAN_LIMITS.get(plan, NO_LIMITS)


def is_paid_plan(plan) -> bool:
    return plan in PAID_PLANS
