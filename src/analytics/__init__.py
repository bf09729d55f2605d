"""
Webhook analytics: per-phase timestamps and SLA accounting.
"""
from src.analytics.recorder import AnalyticsRecorder

__all__ = ["AnalyticsRecorder"]
