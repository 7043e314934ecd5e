"""
Comick API Layer.

This package handles all communication with the remote catalog API.
"""

from .client import ComickAPIClient
from .rate_limiter import AdaptiveRateLimiter

__all__ = ["AdaptiveRateLimiter", "ComickAPIClient"]
