"""
Platform-level modules: authentication and shared rate limiting.

- auth: bearer-token verification and organization resolution
- rate_limit: Redis-backed fixed-window limiter
"""

from src.platform.auth import AuthContext, get_auth_context
from src.platform.rate_limit import RateLimiter, rate_limit

__all__ = ["AuthContext", "get_auth_context", "RateLimiter", "rate_limit"]
