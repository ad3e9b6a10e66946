"""
StoatBot - Dispatcher Package
=============================

Command loading, alias resolution, rate limiting and invocation.
"""

from stoatbot.services.dispatcher.loader import CategoryLoadStats, load_category, load_command
from stoatbot.services.dispatcher.rate_limit import RateLimiter, RateLimitResult, RateLimitState
from stoatbot.services.dispatcher.registry import CommandRegistry, RegistrationError, validate_descriptor
from stoatbot.services.dispatcher.service import CommandDispatcher

__all__ = [
    "CategoryLoadStats",
    "CommandDispatcher",
    "CommandRegistry",
    "RateLimiter",
    "RateLimitResult",
    "RateLimitState",
    "RegistrationError",
    "load_category",
    "load_command",
    "validate_descriptor",
]
