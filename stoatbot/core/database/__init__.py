"""
StoatBot - Database Module
==========================

Persistence for server configs, economy accounts and automod violations.
"""

from stoatbot.core.database.base import DatabaseBase, Transaction, _safe_json_loads
from stoatbot.core.database.batch import BatchOperation, BatchWriter
from stoatbot.core.database.cache import CacheEntry, WriteBackCache
from stoatbot.core.database.economy import WorkResult, format_duration
from stoatbot.core.database.manager import PersistenceManager
from stoatbot.core.database.models import (
    EconomyAccount,
    ServerConfiguration,
    ViolationRecord,
)

__all__ = [
    # Main interface
    "PersistenceManager",
    "DatabaseBase",
    "Transaction",

    # Write-back machinery
    "BatchOperation",
    "BatchWriter",
    "CacheEntry",
    "WriteBackCache",

    # Helpers
    "_safe_json_loads",
    "format_duration",

    # Models
    "EconomyAccount",
    "ServerConfiguration",
    "ViolationRecord",
    "WorkResult",
]
