"""API package for the Blip Soroban Metrics API"""

from . import health, history, metrics, saved_contracts, users

__all__ = ["health", "history", "metrics", "saved_contracts", "users"]
