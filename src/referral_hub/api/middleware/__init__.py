"""API middleware package."""

from src.referral_hub.api.middleware.logging import LoggingMiddleware

__all__ = ["LoggingMiddleware"]
