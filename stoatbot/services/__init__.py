"""
StoatBot - Services Package
===========================

Long-lived services built by the bot at startup:

    automod: message filtering with score escalation
    dispatcher: prefix command routing
"""
