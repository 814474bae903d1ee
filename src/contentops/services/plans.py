"""
Static plan allotments.

Pricing and the plan catalog live with the billing provider; the core only
needs to know how many credits each plan adds per cycle.
"""

FREE_PLAN_ID = "free"

PLAN_ALLOTMENTS = {
    "free": 200,
    "starter": 1000,
    "pro": 5000,
    "scale": 25000,
}


def is_known_plan(plan_id: str) -> bool:
    return plan_id in PLAN_ALLOTMENTS


def plan_allotment(plan_id: str) -> int:
    try:
        return PLAN_ALLOTMENTS[plan_id]
    except KeyError:
        raise ValueError(f"Plan not found: {plan_id}") from None


def is_upgrade(old_plan_id: str, new_plan_id: str) -> bool:
    return plan_allotment(new_plan_id) > PLAN_ALLOTMENTS.get(old_plan_id, 0)
