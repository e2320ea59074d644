"""Notification sinks for scheduled executions."""

from flow_scheduler.monitoring.notifications import NotificationSink, WebhookNotifier

__all__ = ["NotificationSink", "WebhookNotifier"]
