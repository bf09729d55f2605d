"""
Real-time fan-out: dedup gate, channel publisher, push client, automation triggers.
"""
from src.realtime.automation import AutomationQueue
from src.realtime.dedup import DedupGate
from src.realtime.notifier import DedupKey, Notifier
from src.realtime.publisher import (
    AblyRestPublisher,
    LogOnlyPublisher,
    RealtimePublisher,
    build_publisher,
    location_channel,
    project_channel,
    user_channel,
)
from src.realtime.push import ExpoPushClient, LogOnlyPushClient, PushClient, build_push_client

__all__ = [
    "AutomationQueue",
    "DedupGate",
    "DedupKey",
    "Notifier",
    "AblyRestPublisher",
    "LogOnlyPublisher",
    "RealtimePublisher",
    "build_publisher",
    "location_channel",
    "project_channel",
    "user_channel",
    "ExpoPushClient",
    "LogOnlyPushClient",
    "PushClient",
    "build_push_client",
]
