"""
Feature check routes.

Lets the client ask the same gates the server enforces, so upgrade
prompts and read-only banners never disagree with the backend.
"""

import logging

from fastapi import APIRouter, Depends

from src.api.schemas.billing import FeatureCheckResponse, FeatureListResponse
from src.api.dependencies.entitlements import get_entitlements
from src.entitlements.catalog import get_plan_catalog
from src.entitlements.guard import GuardResult, require_feature, require_write_access, required_plan_hint
from src.entitlements.resolver import Entitlements

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/features", tags=["features"])


def _to_response(entitlements: Entitlements, result: GuardResult) -> FeatureCheckResponse:
    reason = None if result.allowed else result.reason.value
    return FeatureCheckResponse(
        feature=result.feature,
        allowed=result.allowed,
        access_level=result.access_level.value,
        reason=reason,
        current_plan=entitlements.plan_slug,
        required_plan=None if result.allowed else required_plan_hint(get_plan_catalog(), result.feature),
    )


@router.get("", response_model=FeatureListResponse)
async def list_features(entitlements: Entitlements = Depends(get_entitlements)):
    """Every registered feature with the caller's access level."""
    catalog = get_plan_catalog()
    return FeatureListResponse(
        plan=entitlements.plan_slug,
        pilot_active=entitlements.pilot_active,
        account_locked=entitlements.is_locked,
        features=[
            _to_response(entitlements, require_feature(entitlements, key))
            for key in catalog.get_feature_keys()
        ],
    )


@router.get("/{feature_key}", response_model=FeatureCheckResponse)
async def check_feature(feature_key: str, entitlements: Entitlements = Depends(get_entitlements)):
    return _to_response(entitlements, require_feature(entitlements, feature_key))


@router.get("/{feature_key}/write", response_model=FeatureCheckResponse)
async def check_write_access(feature_key: str, entitlements: Entitlements = Depends(get_entitlements)):
    return _to_response(entitlements, require_write_access(entitlements, feature_key))
