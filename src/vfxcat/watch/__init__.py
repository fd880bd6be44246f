"""Filesystem watch subscriptions for project indexes."""

from .models import WatchStatus
from .service import ChangeListener, WatchService

__all__ = ["ChangeListener", "WatchService", "WatchStatus"]
