"""
API Dependencies module.

Provides shared FastAPI dependencies for route handlers.
"""

from src.api.dependencies.entitlements import (
    get_entitlement_loader,
    get_entitlements,
    require_feature_dependency,
    require_write_access_dependency,
)

__all__ = [
    "get_entitlement_loader",
    "get_entitlements",
    "require_feature_dependency",
    "require_write_access_dependency",
]
