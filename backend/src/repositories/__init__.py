"""Repository layer."""

from src.repositories.plans_repo import PlansRepository

__all__ = ["PlansRepository"]
