from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, Dict, Any, List
from datetime import datetime, timezone
from enum import Enum
import uuid

# ============================================================================
# ENUMS (System Constants)
# ============================================================================

class PlanTier(str, Enum):
    STARTER = "STARTER"
    GROWTH = "GROWTH"
    PRO = "PRO"
    ENTERPRISE = "ENTERPRISE"

class SubscriptionStatusValue(str, Enum):
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"
    SUSPENDED = "SUSPENDED"
    EXPIRED = "EXPIRED"

class SubscriptionAction(str, Enum):
    CREATED = "CREATED"
    UPGRADED = "UPGRADED"
    DOWNGRADED = "DOWNGRADED"
    UPDATED = "UPDATED"
    CANCELLED = "CANCELLED"
    SUSPENDED = "SUSPENDED"
    REACTIVATED = "REACTIVATED"

class LimitErrorKind(str, Enum):
    """Wire codes returned to clients. Spelling must never change."""
    PROPERTY_LIMIT = "PROPERTY_LIMIT"
    UNIT_LIMIT = "UNIT_LIMIT"
    USER_LIMIT = "USER_LIMIT"
    FEATURE_BLOCKED = "FEATURE_BLOCKED"
    SUBSCRIPTION_INACTIVE = "SUBSCRIPTION_INACTIVE"

class UserRole(str, Enum):
    ROLE_LANDLORD = "ROLE_LANDLORD"
    ROLE_TENANT = "ROLE_TENANT"
    ROLE_ADMIN = "ROLE_ADMIN"

class AuditAction(str, Enum):
    # Plan enforcement
    PLAN_LIMIT_DENIED = "PLAN_LIMIT_DENIED"

    # Subscription lifecycle
    SUBSCRIPTION_CHANGED = "SUBSCRIPTION_CHANGED"

    # Resources
    PROPERTY_CREATED = "PROPERTY_CREATED"
    UNIT_CREATED = "UNIT_CREATED"

# ============================================================================
# SUBSCRIPTION MODELS
# ============================================================================

class SubscriptionOverrides(BaseModel):
    """Operator-granted values that take precedence over the tier defaults.

    Any field left as None falls through to the plan catalog.
    """
    model_config = ConfigDict(extra="ignore")

    max_properties: Optional[int] = None
    max_units: Optional[int] = None
    max_users: Optional[int] = None
    features: Dict[str, bool] = Field(default_factory=dict)

class SubscriptionHistoryEntry(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    history_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    action: SubscriptionAction
    previous_tier: Optional[PlanTier] = None
    new_tier: PlanTier
    previous_price: Optional[float] = None
    new_price: float
    changed_by: Optional[str] = None
    changed_by_name: Optional[str] = None
    reason: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

class Subscription(BaseModel):
    model_config = ConfigDict(extra="ignore")

    subscription_id: Optional[str] = Field(default_factory=lambda: str(uuid.uuid4()))
    account_id: str
    tier: PlanTier = PlanTier.STARTER
    status: SubscriptionStatusValue = SubscriptionStatusValue.ACTIVE
    monthly_price: float
    start_date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    end_date: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    overrides: SubscriptionOverrides = Field(default_factory=SubscriptionOverrides)
    notes: Optional[str] = None
    changed_by: Optional[str] = None
    changed_at: Optional[datetime] = None
    history: List[SubscriptionHistoryEntry] = Field(default_factory=list)

# ============================================================================
# CORE MODELS
# ============================================================================

class Account(BaseModel):
    """Landlord account as read from the store (only what the engine needs)."""
    model_config = ConfigDict(extra="ignore")

    account_id: str
    name: Optional[str] = None
    email: Optional[str] = None
    role: UserRole = UserRole.ROLE_LANDLORD
    team_member_ids: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

class Property(BaseModel):
    model_config = ConfigDict(extra="ignore")

    property_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    account_id: str
    name: str
    address: str
    city: str
    country: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

class Unit(BaseModel):
    model_config = ConfigDict(extra="ignore")

    unit_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    property_id: str
    account_id: str
    unit_number: str
    rent_amount: float
    bedrooms: Optional[int] = None
    bathrooms: Optional[int] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

class AuditLog(BaseModel):
    model_config = ConfigDict(extra="ignore")

    audit_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    action: AuditAction
    actor_role: Optional[UserRole] = None
    actor_id: Optional[str] = None
    account_id: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    before_state: Optional[Dict[str, Any]] = None
    after_state: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    reason_code: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
