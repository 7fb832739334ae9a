"""
Progress Tracking Package
Live progress snapshots and the progress notification channel.
"""

from .notifier import ProgressNotifier, GLOBAL_TOPIC, job_topic
from .progress import ProgressTracker, ExpiringCache, progress_percent

__all__ = [
    "ProgressNotifier",
    "GLOBAL_TOPIC",
    "job_topic",
    "ProgressTracker",
    "ExpiringCache",
    "progress_percent",
]
