"""
Mining Rewards Backend - Server Package

HTTP backend for a referral-and-mining loyalty program backed by a smart
contract. Mirrors on-chain registrations and purchases into SQLite and
accrues login, referral and daily mining rewards.
"""

__version__ = "0.3.0"

__all__ = [
    "accrual",
    "auth",
    "chain",
    "daymath",
    "errors",
    "mining",
    "ratelimit",
    "reconcile",
    "server",
    "storage",
    "users",
]
