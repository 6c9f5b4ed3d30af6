"""Plan tiers and the features they unlock."""

from __future__ import annotations

import enum


class UserPlan(str, enum.Enum):
    FREE = "FREE"
    APRENDIZ = "APRENDIZ"
    EXPERTO = "EXPERTO"
    MAESTRO = "MAESTRO"


PLAN_NAMES: dict[UserPlan, str] = {
    UserPlan.FREE: "Gratis",
    UserPlan.APRENDIZ: "Aprendiz",
    UserPlan.EXPERTO: "Experto",
    UserPlan.MAESTRO: "Maestro",
}

# Precios mensuales en pesos colombianos.
PLAN_PRICES: dict[UserPlan, int] = {
    UserPlan.FREE: 0,
    UserPlan.APRENDIZ: 29900,
    UserPlan.EXPERTO: 49900,
    UserPlan.MAESTRO: 69900,
}

MAX_COURSES_PER_MONTH: dict[UserPlan, int] = {
    UserPlan.FREE: 1,
    UserPlan.APRENDIZ: 5,
    UserPlan.EXPERTO: 10,
    UserPlan.MAESTRO: 20,
}

COMMUNITY_PLANS = frozenset({UserPlan.EXPERTO, UserPlan.MAESTRO})
PUBLISH_PLANS = frozenset({UserPlan.MAESTRO})

# Los usuarios FREE solo pueden avanzar en los primeros módulos.
FREE_MAX_MODULE_ORDER = 2


def coerce_plan(value: UserPlan | str | None) -> UserPlan:
    if isinstance(value, UserPlan):
        return value
    try:
        return UserPlan(str(value).upper())
    except ValueError:
        return UserPlan.FREE


def plan_price_in_cents(plan: UserPlan | str) -> int:
    return PLAN_PRICES[coerce_plan(plan)] * 100


def can_create_course(plan: UserPlan | str | None, courses_this_month: int) -> bool:
    return courses_this_month < MAX_COURSES_PER_MONTH[coerce_plan(plan)]


def remaining_courses(plan: UserPlan | str | None, courses_this_month: int) -> int:
    return max(0, MAX_COURSES_PER_MONTH[coerce_plan(plan)] - courses_this_month)


def can_access_community(plan: UserPlan | str | None) -> bool:
    return coerce_plan(plan) in COMMUNITY_PLANS


def can_publish(plan: UserPlan | str | None) -> bool:
    return coerce_plan(plan) in PUBLISH_PLANS
