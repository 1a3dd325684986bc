"""Subscription plans and the quota rules derived from them.

Everything here is static configuration plus pure functions, so it can be
called from any request or task without locking.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict


class Tier(str, Enum):
    FREE = "free"
    PRO = "pro"
    DEV = "dev"


class ModelClass(str, Enum):
    BASIC = "basic"
    MAX = "max"


UNLIMITED = -1


@dataclass(frozen=True)
class PlanPolicy:
    """Limits attached to one subscription tier."""
    label: str
    badge: str
    basic_limit: int      # -1 = unlimited
    max_limit: int        # 0 = no access, -1 = unlimited
    max_message_length: int
    history_days: int     # -1 = unlimited
    priority: bool
    code_export: bool


PLANS: Dict[Tier, PlanPolicy] = {
    Tier.FREE: PlanPolicy(
        label="Free",
        badge="",
        basic_limit=10,
        max_limit=0,
        max_message_length=2000,
        history_days=7,
        priority=False,
        code_export=False,
    ),
    Tier.PRO: PlanPolicy(
        label="Pro",
        badge="⚡",
        basic_limit=UNLIMITED,
        max_limit=5,
        max_message_length=8000,
        history_days=30,
        priority=True,
        code_export=True,
    ),
    Tier.DEV: PlanPolicy(
        label="Dev",
        badge="🔥",
        basic_limit=UNLIMITED,
        max_limit=50,
        max_message_length=16000,
        history_days=UNLIMITED,
        priority=True,
        code_export=True,
    ),
}

MODEL_INFO: Dict[ModelClass, Dict[str, str]] = {
    ModelClass.BASIC: {"label": "Basic", "description": "Fast and reliable"},
    ModelClass.MAX: {"label": "Max", "description": "Best quality coding"},
}


def resolve_tier(value) -> Tier:
    """Map a stored plan name to a Tier, falling back to free for unknown values."""
    try:
        return Tier(value)
    except ValueError:
        return Tier.FREE


def get_plan(tier) -> PlanPolicy:
    return PLANS[resolve_tier(tier)]


def can_use_model(tier, model: ModelClass) -> bool:
    """The basic model is always allowed; max needs a nonzero daily allowance."""
    if ModelClass(model) is ModelClass.BASIC:
        return True
    return get_plan(tier).max_limit != 0


def daily_limit(tier, model: ModelClass) -> int:
    """Daily call allowance for a tier/model pair. -1 means unlimited."""
    plan = get_plan(tier)
    return plan.basic_limit if ModelClass(model) is ModelClass.BASIC else plan.max_limit


def max_message_length(tier) -> int:
    return get_plan(tier).max_message_length
