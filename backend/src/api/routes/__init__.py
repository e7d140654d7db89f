# API routes
from src.api.routes import health
from src.api.routes import billing
from src.api.routes import features
from src.api.routes import webhooks_stripe

__all__ = ["health", "billing", "features", "webhooks_stripe"]
