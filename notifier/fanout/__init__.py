"""Fan-out of business events into queue rows, with preference filtering."""

from .directory import RecipientDirectory, StaticRecipientDirectory
from .preferences import DefaultsMap, PreferenceService, build_defaults
from .service import FanoutResult, FanoutService

__all__ = [
    "FanoutService",
    "FanoutResult",
    "RecipientDirectory",
    "StaticRecipientDirectory",
    "PreferenceService",
    "DefaultsMap",
    "build_defaults",
]
