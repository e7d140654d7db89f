"""
Entitlement dependencies for routes.

Resolves the caller's Entitlements once per request and provides gate
factories that answer 403 with the structured upgrade_required payload.

Usage:
    @router.post(
        "/compliance/inspections",
        dependencies=[Depends(require_write_access_dependency("vgp_compliance"))],
    )
    async def create_inspection(...):
        ...
"""

import logging
from threading import Lock
from typing import Callable, Optional

from fastapi import Depends, HTTPException, status

from src.database.session import get_session_factory
from src.entitlements.catalog import get_plan_catalog
from src.entitlements.context_loader import EntitlementContextLoader
from src.entitlements.errors import OrganizationNotFoundError, UpgradeRequiredError
from src.entitlements.guard import Denied, require_feature, require_write_access, required_plan_hint
from src.entitlements.resolver import Entitlements, resolve
from src.platform.auth import AuthContext, get_auth_context

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("entitlements.audit")

_loader: Optional[EntitlementContextLoader] = None
_loader_lock = Lock()


def get_entitlement_loader() -> EntitlementContextLoader:
    """Process-wide loader bound to the application session factory."""
    global _loader
    if _loader is None:
        with _loader_lock:
            if _loader is None:
                _loader = EntitlementContextLoader(get_session_factory())
    return _loader


async def get_entitlements(
    auth: AuthContext = Depends(get_auth_context),
    loader: EntitlementContextLoader = Depends(get_entitlement_loader),
) -> Entitlements:
    """Resolved entitlements of the caller's organization (403 if none)."""
    context = await loader.load(auth.organization_id)
    if context is None:
        error = OrganizationNotFoundError(auth.auth_user_id)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(error))

    catalog = loader.catalog
    return resolve(
        context,
        policy=catalog.pilot_policy,
        unlimited_quota=catalog.unlimited_quota,
    )


def denial_to_http(entitlements: Entitlements, denied: Denied) -> HTTPException:
    """Audit a denial and convert it into the 403 upgrade_required response."""
    error = UpgradeRequiredError(
        feature=denied.feature,
        reason=denied.reason.value,
        current_plan=denied.current_plan,
        message=denied.message,
        required_plan=required_plan_hint(get_plan_catalog(), denied.feature),
    )
    audit_logger.warning(
        "Entitlement denied",
        extra={
            "organization_id": entitlements.organization_id,
            "feature": denied.feature,
            "reason": denied.reason.value,
            "plan": denied.current_plan,
            "access_level": denied.access_level.value,
        },
    )
    return HTTPException(status_code=error.http_status, detail=error.to_dict())


def require_feature_dependency(feature_key: str) -> Callable:
    """Dependency factory: feature must be readable (full or read_only)."""

    async def check_feature(entitlements: Entitlements = Depends(get_entitlements)) -> Entitlements:
        result = require_feature(entitlements, feature_key)
        if not result.allowed:
            raise denial_to_http(entitlements, result)
        return entitlements

    return check_feature


def require_write_access_dependency(feature_key: str) -> Callable:
    """Dependency factory: feature must be writable (full access only)."""

    async def check_write_access(entitlements: Entitlements = Depends(get_entitlements)) -> Entitlements:
        result = require_write_access(entitlements, feature_key)
        if not result.allowed:
            raise denial_to_http(entitlements, result)
        return entitlements

    return check_write_access
