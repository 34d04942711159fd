"""
Personalization Module - Learner profiles and recommendations.

Components:
- profile: UserLearningProfile, Recommendations and cold-start constants
- manager: ProfileManager (initialize, update from session, recommend)
"""

from src.personalization.manager import ProfileManager, ProfileStore
from src.personalization.profile import (
    HourStats,
    Recommendations,
    UserLearningProfile,
    format_hour,
)

__all__ = [
    "HourStats",
    "ProfileManager",
    "ProfileStore",
    "Recommendations",
    "UserLearningProfile",
    "format_hour",
]
