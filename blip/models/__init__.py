"""Models package for the Blip Soroban Metrics API"""

from .database_models import Base, SavedContract, UserSavedContract

__all__ = ["Base", "SavedContract", "UserSavedContract"]
