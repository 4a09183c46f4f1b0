"""
Client module for the BoardGameGeek XML API.

This module handles:
- Token bucket and debounce throttling
- Retry with exponential backoff
- Endpoint helpers for item, family and search lookups
"""

from .rate_limit import TokenBucket, Debouncer, RetryPolicy
from .transport import RateLimitedTransport

__all__ = [
    "TokenBucket",
    "Debouncer",
    "RetryPolicy",
    "RateLimitedTransport",
]
