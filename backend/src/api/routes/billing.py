"""
Billing API routes: checkout, billing portal, subscription summary,
plan change and the public plan list.

All routes except /plans require a bearer token; the organization is
always taken from the authenticated principal.

Billing errors propagate to billing_error_handler (registered in main),
which answers {"error": message} with the mapped status code.
"""

import logging

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from src.api.dependencies.entitlements import get_entitlements
from src.api.schemas.billing import (
    CheckoutRequest,
    PlanChangeRequest,
    PlanChangeResponse,
    PlanListResponse,
    PlanResponse,
    SessionUrlResponse,
    SubscriptionDetailsResponse,
    SubscriptionSummaryResponse,
    UsageResponse,
)
from src.database.session import get_db_session
from src.entitlements.catalog import get_plan_catalog
from src.entitlements.resolver import Entitlements
from src.platform.auth import AuthContext, get_auth_context
from src.platform.rate_limit import rate_limit
from src.services.billing_errors import (
    AlreadySubscribedError,
    BillingError,
    NoBillingAccountError,
    PaymentProcessorError,
    PaymentProcessorNotConfiguredError,
    PlanLimitExceededError,
    PlanNotFoundError,
    PriceNotConfiguredError,
    SalesOnlyPlanError,
)
from src.services.checkout_service import CheckoutService
from src.services.plan_change import PlanChangeService
from src.services.subscription_summary import build_subscription_summary

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/billing", tags=["billing"])

BILLING_ERROR_STATUS = {
    PlanNotFoundError: status.HTTP_404_NOT_FOUND,
    SalesOnlyPlanError: status.HTTP_400_BAD_REQUEST,
    PriceNotConfiguredError: status.HTTP_503_SERVICE_UNAVAILABLE,
    AlreadySubscribedError: status.HTTP_409_CONFLICT,
    NoBillingAccountError: status.HTTP_400_BAD_REQUEST,
    PlanLimitExceededError: status.HTTP_409_CONFLICT,
    PaymentProcessorError: status.HTTP_502_BAD_GATEWAY,
    PaymentProcessorNotConfiguredError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def billing_error_status(exc: BillingError) -> int:
    for error_type, code in BILLING_ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return code
    return status.HTTP_400_BAD_REQUEST


async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
    code = billing_error_status(exc)
    log = logger.error if code >= 500 else logger.warning
    log("Billing request failed", extra={
        "path": request.url.path,
        "error_type": type(exc).__name__,
        "status_code": code,
    })
    return JSONResponse(status_code=code, content={"error": str(exc)})


def get_checkout_service(db: Session = Depends(get_db_session)) -> CheckoutService:
    return CheckoutService(db)


def get_plan_change_service(db: Session = Depends(get_db_session)) -> PlanChangeService:
    return PlanChangeService(db)


@router.post(
    "/checkout",
    response_model=SessionUrlResponse,
    dependencies=[Depends(rate_limit("checkout"))],
)
async def create_checkout(
    request: Request,
    body: CheckoutRequest,
    auth: AuthContext = Depends(get_auth_context),
    service: CheckoutService = Depends(get_checkout_service),
):
    """
    Create a Stripe Checkout session for a plan.

    The subscription itself is created by Stripe; local state follows
    through the webhook.
    """
    logger.info("Creating checkout session", extra={
        "organization_id": auth.organization_id,
        "plan": body.plan_slug,
        "billing_cycle": body.billing_cycle,
    })
    url = await run_in_threadpool(
        service.create_checkout_session,
        auth.organization_id,
        body.plan_slug,
        body.billing_cycle,
        request.headers.get("origin"),
        auth.email,
    )
    return SessionUrlResponse(url=url)


@router.post(
    "/portal",
    response_model=SessionUrlResponse,
    dependencies=[Depends(rate_limit("checkout"))],
)
async def create_portal(
    request: Request,
    auth: AuthContext = Depends(get_auth_context),
    service: CheckoutService = Depends(get_checkout_service),
):
    """Create a Stripe billing-portal session for the organization's customer."""
    url = await run_in_threadpool(
        service.create_portal_session,
        auth.organization_id,
        request.headers.get("origin"),
    )
    return SessionUrlResponse(url=url)


@router.get("/subscription", response_model=SubscriptionSummaryResponse)
async def get_subscription(
    entitlements: Entitlements = Depends(get_entitlements),
    db: Session = Depends(get_db_session),
):
    """Subscription, usage, pilot and lock state for the settings page."""
    summary = build_subscription_summary(db, entitlements)
    details = summary.subscription
    return SubscriptionSummaryResponse(
        subscription=SubscriptionDetailsResponse(
            plan_slug=details.plan_slug,
            plan_name=details.plan_name,
            status=details.status,
            billing_cycle=details.billing_cycle,
            current_period_start=details.current_period_start,
            current_period_end=details.current_period_end,
            cancel_at_period_end=details.cancel_at_period_end,
        ),
        usage=UsageResponse(
            assets=summary.usage.assets,
            max_assets=summary.usage.max_assets,
            limit_reached=summary.usage.limit_reached,
        ),
        is_pilot=summary.is_pilot,
        pilot_active=summary.pilot_active,
        days_remaining=summary.days_remaining,
        pilot_end_date=summary.pilot_end_date,
        access_level_for_compliance=summary.access_level_for_compliance.value,
        account_locked=summary.account_locked,
        pilot_warning=summary.pilot_warning,
    )


@router.post("/subscription", response_model=PlanChangeResponse)
async def change_plan(
    body: PlanChangeRequest,
    auth: AuthContext = Depends(get_auth_context),
    service: PlanChangeService = Depends(get_plan_change_service),
):
    """Move an existing Stripe subscription to another plan or billing cycle."""
    result = await run_in_threadpool(
        service.change_plan,
        auth.organization_id,
        body.plan_slug,
        body.billing_cycle,
    )
    return PlanChangeResponse(
        previous_plan=result.previous_plan,
        plan=result.plan,
        billing_cycle=result.billing_cycle,
        is_downgrade=result.is_downgrade,
        changed=result.changed,
    )


@router.get("/plans", response_model=PlanListResponse)
async def list_plans():
    """Active plans in tier order (public)."""
    catalog = get_plan_catalog()

    def quota(value: int):
        return None if catalog.is_unlimited(value) else value

    return PlanListResponse(
        version=catalog.version,
        plans=[
            PlanResponse(
                slug=plan.slug,
                name=plan.name,
                description=plan.description,
                tier=plan.tier,
                price_monthly_cents=plan.price_monthly_cents,
                price_yearly_cents=plan.price_yearly_cents,
                max_assets=quota(plan.max_assets),
                max_users=quota(plan.max_users),
                features=dict(plan.features),
                purchasable=plan.purchasable,
            )
            for plan in catalog.get_all_plans()
        ],
    )
