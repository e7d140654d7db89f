"""
Pydantic schemas for the billing and feature APIs.

JSON keys are camelCase (the web client's convention); Python attributes
stay snake_case. Requests accept either form.
"""

from datetime import date, datetime
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Requests
# =============================================================================

class CheckoutRequest(CamelModel):
    plan_slug: str = Field(..., min_length=1, max_length=50)
    billing_cycle: Literal["monthly", "yearly"] = "yearly"


class PlanChangeRequest(CamelModel):
    plan_slug: str = Field(..., min_length=1, max_length=50)
    billing_cycle: Literal["monthly", "yearly"] = "yearly"


# =============================================================================
# Responses
# =============================================================================

class SessionUrlResponse(CamelModel):
    url: str


class SubscriptionDetailsResponse(CamelModel):
    plan_slug: str
    plan_name: str
    status: Optional[str] = None
    billing_cycle: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False


class UsageResponse(CamelModel):
    assets: int
    max_assets: Optional[int] = Field(None, description="None when unlimited")
    limit_reached: bool


class SubscriptionSummaryResponse(CamelModel):
    subscription: SubscriptionDetailsResponse
    usage: UsageResponse
    is_pilot: bool
    pilot_active: bool
    days_remaining: Optional[int] = None
    pilot_end_date: Optional[date] = None
    access_level_for_compliance: str
    account_locked: bool
    pilot_warning: bool


class PlanChangeResponse(CamelModel):
    previous_plan: Optional[str] = None
    plan: str
    billing_cycle: str
    is_downgrade: bool
    changed: bool


class PlanResponse(CamelModel):
    slug: str
    name: str
    description: str = ""
    tier: int
    price_monthly_cents: Optional[int] = None
    price_yearly_cents: Optional[int] = None
    max_assets: Optional[int] = Field(None, description="None when unlimited")
    max_users: Optional[int] = Field(None, description="None when unlimited")
    features: Dict[str, Union[bool, str]]
    purchasable: bool


class PlanListResponse(CamelModel):
    version: Optional[str] = None
    plans: List[PlanResponse]


class FeatureCheckResponse(CamelModel):
    feature: str
    allowed: bool
    access_level: str
    reason: Optional[str] = None
    current_plan: str
    required_plan: Optional[str] = None


class FeatureListResponse(CamelModel):
    plan: str
    pilot_active: bool
    account_locked: bool
    features: List[FeatureCheckResponse]
