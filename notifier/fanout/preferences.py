"""Preference lookup with the category default policy applied."""

from datetime import datetime
from typing import Dict, Optional, Tuple

from notifier.config.models import PreferenceDefaultsConfig
from notifier.domain.models import Channel, EventCategory, EventType, UserPreferences
from notifier.persistence import PreferenceRepository, SessionScope, get_session

DefaultsMap = Dict[Tuple[EventCategory, Channel], bool]


def build_defaults(config: Optional[PreferenceDefaultsConfig] = None) -> DefaultsMap:
    """Flatten the configured per-category defaults into a lookup table.

    Without configuration: transactional events are on for every channel;
    broadcast events are opt-in for email and push and on for in-app.
    """
    config = config or PreferenceDefaultsConfig()
    defaults: DefaultsMap = {}
    for category, channel_defaults in (
        (EventCategory.TRANSACTIONAL, config.transactional),
        (EventCategory.BROADCAST, config.broadcast),
    ):
        for channel in Channel:
            defaults[(category, channel)] = getattr(channel_defaults, channel.value)
    return defaults


class PreferenceService:
    """Reads and writes user delivery preferences."""

    def __init__(
        self,
        defaults: Optional[DefaultsMap] = None,
        session_scope: SessionScope = get_session,
    ):
        self.defaults = defaults if defaults is not None else build_defaults()
        self.session_scope = session_scope

    def get_preferences(self, user_id: str) -> UserPreferences:
        with self.session_scope() as session:
            return PreferenceRepository(session).get_for_user(user_id, self.defaults)

    def is_enabled(self, user_id: str, event_type: EventType, channel: Channel) -> bool:
        return self.get_preferences(user_id).is_enabled(event_type, channel)

    def set_preference(
        self,
        user_id: str,
        event_type: EventType,
        channel: Channel,
        enabled: bool,
        now: Optional[datetime] = None,
    ) -> None:
        with self.session_scope() as session:
            PreferenceRepository(session).set_preference(
                user_id, EventType(event_type).value, channel, enabled, now=now
            )

    def set_channel_enabled(
        self,
        user_id: str,
        channel: Channel,
        enabled: bool,
        now: Optional[datetime] = None,
    ) -> None:
        with self.session_scope() as session:
            PreferenceRepository(session).set_channel_enabled(user_id, channel, enabled, now=now)
