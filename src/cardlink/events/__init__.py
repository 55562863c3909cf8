"""Pub/sub broker for cardlink."""

from cardlink.events.bus import (
    SYSTEM_MONITOR_TOPIC,
    Broker,
    Published,
    Publisher,
    dashboard_topic,
    onboarding_topic,
    session_topic,
)

__all__ = [
    "SYSTEM_MONITOR_TOPIC",
    "Broker",
    "Published",
    "Publisher",
    "dashboard_topic",
    "onboarding_topic",
    "session_topic",
]
