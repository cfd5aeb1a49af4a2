"""
Notification services.

Outcome notifications sent from post-run hooks.
"""

from .webhook import WebhookNotifier

__all__ = ["WebhookNotifier"]
