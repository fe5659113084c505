"""
PM-Next Support Bot Backend Application
"""

__version__ = "1.0.0"
__author__ = "PM-Next Support Team"

# Application metadata
APP_NAME = "PM-Next Support Bot"
APP_DESCRIPTION = "Lark support bot for PM-Next with FAQ menus, knowledge answers and ticket intake"

from .config import settings, get_settings

__all__ = [
    "settings",
    "get_settings",
    "APP_NAME",
    "APP_DESCRIPTION",
    "__version__",
]
