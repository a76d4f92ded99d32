"""
Plan Catalogue — Prices (whole INR) and visibility windows per plan type.
"""
from datetime import datetime
from typing import Dict, NamedTuple

from phrames.utils.timeutil import add_days


class Plan(NamedTuple):
    name: str
    price: int
    days: int


PRICING_PLANS: Dict[str, Plan] = {
    "free": Plan("Free", 0, 30),
    "week": Plan("1 Week", 49, 7),
    "month": Plan("1 Month", 99, 30),
    "3month": Plan("3 Months", 249, 90),
    "6month": Plan("6 Months", 499, 180),
    "year": Plan("1 Year", 899, 365),
}

PAID_PLANS = tuple(p for p in PRICING_PLANS if p != "free")


def is_paid_plan(plan_type: str) -> bool:
    return plan_type in PAID_PLANS


def plan_price(plan_type: str) -> int:
    return PRICING_PLANS[plan_type].price


def plan_days(plan_type: str) -> int:
    return PRICING_PLANS[plan_type].days


def expiry_for(plan_type: str, now: datetime) -> datetime:
    """Expiry of an activation performed at ``now``."""
    return add_days(now, plan_days(plan_type))
