"""
Plan configuration for subscription SKUs.

This module is the single source of truth for the SKU catalogue and the
provider-specific identifiers each SKU is sold under. It lives in core/ so
the normalizers, services and API layers can all import from it without
creating circular dependencies.
"""

from enum import StrEnum


class SKU(StrEnum):
    """Generic subscription SKUs, independent of payment provider."""

    PRO_MONTHLY = "pro-monthly"
    PRO_ANNUAL = "pro-annual"
    PRO_PERPETUAL = "pro-perpetual"
    TEAM_MONTHLY = "team-monthly"
    TEAM_ANNUAL = "team-annual"


class PlanTier(StrEnum):
    """Who a plan's subscription applies to."""

    PRO = "pro"
    TEAM = "team"


# Plan configuration with tier, interval and provider identifiers
PLANS = {
    SKU.PRO_MONTHLY: {
        "name": "Pro (monthly)",
        "tier": PlanTier.PRO,
        "interval": "monthly",
        "paddle_id": 550380,
        "paypro_id": 79920,
    },
    SKU.PRO_ANNUAL: {
        "name": "Pro (annual)",
        "tier": PlanTier.PRO,
        "interval": "annual",
        "paddle_id": 550382,
        "paypro_id": 82586,
    },
    SKU.PRO_PERPETUAL: {
        "name": "Pro (perpetual)",
        "tier": PlanTier.PRO,
        "interval": "perpetual",
        "paddle_id": 599788,
        "paypro_id": None,  # Not sold via PayPro
    },
    SKU.TEAM_MONTHLY: {
        "name": "Team (monthly)",
        "tier": PlanTier.TEAM,
        "interval": "monthly",
        "paddle_id": 550789,
        "paypro_id": 82588,
    },
    SKU.TEAM_ANNUAL: {
        "name": "Team (annual)",
        "tier": PlanTier.TEAM,
        "interval": "annual",
        "paddle_id": 550788,
        "paypro_id": 82587,
    },
}

_PADDLE_ID_TO_SKU = {plan["paddle_id"]: sku for sku, plan in PLANS.items()}


def parse_sku(value: str | None) -> SKU | None:
    """Return the SKU for a stored or provider-supplied string, or None if unknown."""
    if not value:
        return None
    try:
        return SKU(value)
    except ValueError:
        return None


def get_sku_for_paddle_id(plan_id: int | None) -> SKU | None:
    """Map a Paddle plan id to its SKU."""
    if plan_id is None:
        return None
    return _PADDLE_ID_TO_SKU.get(plan_id)


def get_paddle_id_for_sku(sku: SKU) -> int:
    """Legacy Paddle plan id for a SKU, still returned to older clients."""
    return PLANS[sku]["paddle_id"]


def is_team_sku(sku: SKU | None) -> bool:
    """Check whether a SKU is a team (seat-based) plan."""
    return sku is not None and PLANS[sku]["tier"] == PlanTier.TEAM
