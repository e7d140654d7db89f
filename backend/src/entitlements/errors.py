"""
Structured error classes for entitlement enforcement.

Denials are normally returned as values (see guard.Denied); these
exceptions exist for the HTTP boundary, where a denial has to abort the
request.
"""

from typing import Optional

from fastapi import status


class EntitlementError(Exception):
    """Base exception for entitlement errors."""
    pass


class OrganizationNotFoundError(EntitlementError):
    """The authenticated principal does not resolve to an organization."""

    def __init__(self, principal: Optional[str] = None):
        self.principal = principal
        super().__init__("No organization found for the authenticated user")


class UpgradeRequiredError(EntitlementError):
    """
    Raised when a feature gate denies a request.

    Carries the feature key and current plan so the client can render a
    specific upgrade prompt without a second round trip.
    """

    def __init__(
        self,
        feature: str,
        reason: str,
        current_plan: str,
        message: Optional[str] = None,
        required_plan: Optional[str] = None,
        http_status: int = status.HTTP_403_FORBIDDEN,
    ):
        self.feature = feature
        self.reason = reason
        self.current_plan = current_plan
        self.required_plan = required_plan
        self.message = message or f"Feature '{feature}' is not available on your current plan"
        self.http_status = http_status
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON response."""
        return {
            "error": "upgrade_required",
            "reason": self.reason,
            "feature": self.feature,
            "current_plan": self.current_plan,
            "required_plan": self.required_plan,
            "message": self.message,
        }
