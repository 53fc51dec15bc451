"""Plan Catalog - Single Source of Truth for tier economics and capabilities.

This is the AUTHORITATIVE source for:
- Tier ordering (STARTER < GROWTH < PRO < ENTERPRISE)
- Monthly pricing
- Property / unit / user limits
- Feature entitlements per tier

RULES:
1. Limits and features never decrease as the tier increases.
2. Unlimited is None, never a large integer. Compare through within_limit().
3. A new feature flag is added here (FEATURE_KEYS, PLAN_CONFIGS,
   FEATURE_METADATA) and nowhere else.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple
from models import PlanTier
import logging

logger = logging.getLogger(__name__)


# ============================================================================
# UNLIMITED - distinguishable from any finite count
# ============================================================================
UNLIMITED = None


def within_limit(used: int, limit: Optional[int]) -> bool:
    """True when one more resource still fits (strict <). Unlimited always fits."""
    if limit is UNLIMITED:
        return True
    return used < limit


def admits(needed: int, limit: Optional[int]) -> bool:
    """True when `needed` resources in total are allowed by `limit`."""
    if limit is UNLIMITED:
        return True
    return needed <= limit


def format_limit(limit: Optional[int]) -> Any:
    """Display form used by plan listings."""
    return "Unlimited" if limit is UNLIMITED else limit


# ============================================================================
# TIER ORDER
# ============================================================================
PLAN_TIER_ORDER: Tuple[PlanTier, ...] = (
    PlanTier.STARTER,
    PlanTier.GROWTH,
    PlanTier.PRO,
    PlanTier.ENTERPRISE,
)

DEFAULT_TIER = PlanTier.STARTER


def tier_rank(tier: PlanTier) -> int:
    return PLAN_TIER_ORDER.index(PlanTier(tier))


def next_tiers(tier: PlanTier) -> List[PlanTier]:
    """Tiers strictly above `tier`, ascending."""
    return list(PLAN_TIER_ORDER[tier_rank(tier) + 1:])


# ============================================================================
# FEATURE KEYS
# ============================================================================
FEATURE_KEYS: Tuple[str, ...] = (
    "automation",
    "advanced_finance",
    "api_access",
    "priority_support",
    "custom_integrations",
    "role_based_access",
)

FEATURE_METADATA = {
    "automation": {
        "name": "Automation",
        "description": "Automatic rent generation, reminders and recurring tasks",
    },
    "advanced_finance": {
        "name": "Advanced Finance",
        "description": "Reconciliation, deposit deductions and finance reports",
    },
    "api_access": {
        "name": "API Access",
        "description": "Programmatic access to portfolio data",
    },
    "priority_support": {
        "name": "Priority Support",
        "description": "Faster response times from the support team",
    },
    "custom_integrations": {
        "name": "Custom Integrations",
        "description": "Bespoke integrations with third-party systems",
    },
    "role_based_access": {
        "name": "Role-Based Access",
        "description": "Team members with scoped permissions",
    },
}


# ============================================================================
# PLAN DEFINITIONS
# ============================================================================
@dataclass(frozen=True)
class PlanConfig:
    tier: PlanTier
    display_name: str
    monthly_price: float
    max_properties: Optional[int]
    max_units: Optional[int]
    max_users: Optional[int]
    features: Mapping[str, bool] = field(default_factory=dict)

    def limit_for(self, resource: str) -> Optional[int]:
        return getattr(self, f"max_{resource}")

    def has_feature(self, feature_key: str) -> bool:
        return bool(self.features.get(feature_key, False))


def _features(*enabled: str) -> Dict[str, bool]:
    return {key: key in enabled for key in FEATURE_KEYS}


PLAN_CONFIGS: Dict[PlanTier, PlanConfig] = {
    PlanTier.STARTER: PlanConfig(
        tier=PlanTier.STARTER,
        display_name="Starter",
        monthly_price=599,
        max_properties=5,
        max_units=10,
        max_users=1,
        features=_features(),
    ),
    PlanTier.GROWTH: PlanConfig(
        tier=PlanTier.GROWTH,
        display_name="Growth",
        monthly_price=1199,
        max_properties=20,
        max_units=50,
        max_users=3,
        features=_features("automation"),
    ),
    PlanTier.PRO: PlanConfig(
        tier=PlanTier.PRO,
        display_name="Pro",
        monthly_price=2999,
        max_properties=100,
        max_units=200,
        max_users=10,
        features=_features(
            "automation",
            "advanced_finance",
            "api_access",
            "priority_support",
            "role_based_access",
        ),
    ),
    PlanTier.ENTERPRISE: PlanConfig(
        tier=PlanTier.ENTERPRISE,
        display_name="Enterprise",
        monthly_price=7999,
        max_properties=UNLIMITED,
        max_units=UNLIMITED,
        max_users=UNLIMITED,
        features=_features(*FEATURE_KEYS),
    ),
}


# ============================================================================
# LAYERED RESOLUTION
# ============================================================================
def resolve_layered(key: str, *layers: Mapping[str, Any]) -> Any:
    """Return the value from the first layer that defines `key` with a non-None value.

    Layers are ordered by precedence, e.g. (overrides, tier_defaults).
    """
    for layer in layers:
        value = layer.get(key)
        if value is not None:
            return value
    return None


# ============================================================================
# PLAN CATALOG SERVICE
# ============================================================================
class PlanCatalogService:
    """Lookup operations over the static catalog."""

    def get_plan(self, tier: PlanTier) -> PlanConfig:
        return PLAN_CONFIGS[PlanTier(tier)]

    def resolve_tier(self, value: Optional[str]) -> PlanTier:
        """Resolve a stored tier string. Unknown or empty values raise ValueError."""
        if not value:
            raise ValueError("Plan tier is required")
        return PlanTier(str(value).strip().upper())

    def is_valid_tier(self, value: Optional[str]) -> bool:
        try:
            self.resolve_tier(value)
        except ValueError:
            return False
        return True

    def limit_defaults(self, tier: PlanTier) -> Dict[str, Optional[int]]:
        plan = self.get_plan(tier)
        return {
            "max_properties": plan.max_properties,
            "max_units": plan.max_units,
            "max_users": plan.max_users,
        }

    def feature_defaults(self, tier: PlanTier) -> Dict[str, bool]:
        return dict(self.get_plan(tier).features)

    def feature_name(self, feature_key: str) -> str:
        meta = FEATURE_METADATA.get(feature_key)
        return meta["name"] if meta else feature_key

    def ensure_feature_key(self, feature_key: str) -> str:
        if feature_key not in FEATURE_KEYS:
            raise ValueError(f"Unknown feature key: {feature_key}")
        return feature_key

    # -------------------------------------------------------------------------
    # Upgrade suggestions
    # -------------------------------------------------------------------------

    def suggest_tier_for_capacity(
        self,
        current: PlanTier,
        resource: str,
        needed: int,
    ) -> PlanTier:
        """Lowest tier above `current` whose limit admits `needed`; ENTERPRISE otherwise."""
        for tier in next_tiers(current):
            if admits(needed, self.get_plan(tier).limit_for(resource)):
                return tier
        return PlanTier.ENTERPRISE

    def suggest_tier_for_feature(self, current: PlanTier, feature_key: str) -> PlanTier:
        """Lowest tier above `current` that enables the feature; ENTERPRISE otherwise."""
        for tier in next_tiers(current):
            if self.get_plan(tier).has_feature(feature_key):
                return tier
        return PlanTier.ENTERPRISE

    # -------------------------------------------------------------------------
    # Listings
    # -------------------------------------------------------------------------

    def get_available_plans(self) -> List[Dict[str, Any]]:
        """Public plan listing; unbounded limits rendered as 'Unlimited'."""
        return [
            {
                "type": plan.tier.value,
                "name": plan.display_name,
                "price": plan.monthly_price,
                "maxProperties": format_limit(plan.max_properties),
                "maxUnits": format_limit(plan.max_units),
                "maxUsers": format_limit(plan.max_users),
                "features": dict(plan.features),
            }
            for plan in (PLAN_CONFIGS[tier] for tier in PLAN_TIER_ORDER)
        ]

    def get_entitlement_matrix(self) -> Dict[str, Any]:
        """Feature/tier matrix for admin screens."""
        return {
            feature_key: {
                **FEATURE_METADATA[feature_key],
                "plans": {
                    tier.value: PLAN_CONFIGS[tier].has_feature(feature_key)
                    for tier in PLAN_TIER_ORDER
                },
            }
            for feature_key in FEATURE_KEYS
        }


# Singleton instance
plan_catalog = PlanCatalogService()
