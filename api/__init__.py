"""
HTTP surface for the event notifier.

Exposes emit and dispatch triggers plus the data operations used for
operating the notifier (recipients, preferences, templates, delivery review).
"""

from api.main import app

__all__ = ["app"]
