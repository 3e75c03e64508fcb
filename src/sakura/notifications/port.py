"""Notifier port: hands workflow milestones to the notification service.

Email, SMS and push delivery happen elsewhere. The workflow only reports
that something happened to an order; a failed hand-off never undoes the
transition that triggered it.
"""

from abc import ABC, abstractmethod


class NotifierPort(ABC):
    @abstractmethod
    def notify(self, event_type: str, order_id: str, payload: dict) -> None:
        """Forward a milestone. May raise; callers log and move on."""
        ...
