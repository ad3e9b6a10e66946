"""
StoatBot - Automod Package
==========================

Spam, mention, caps, link and invite filtering with score escalation.
"""

from stoatbot.services.automod.history import MessageHistory, MessageHistoryWindow, SpamCheck
from stoatbot.services.automod.service import AutomodService

__all__ = [
    "AutomodService",
    "MessageHistory",
    "MessageHistoryWindow",
    "SpamCheck",
]
