"""Recording notifier for development and testing."""

from sakura.notifications.port import NotifierPort


class FakeNotifier(NotifierPort):
    def __init__(self) -> None:
        self.should_succeed = True
        self.failure_reason = "Notification service unavailable"
        self.sent: list[dict] = []

    def configure(self, should_succeed: bool = True, failure_reason: str = "Notification service unavailable") -> None:
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def notify(self, event_type: str, order_id: str, payload: dict) -> None:
        if not self.should_succeed:
            raise ConnectionError(self.failure_reason)
        self.sent.append({"event_type": event_type, "order_id": order_id, "payload": payload})

    def sent_types(self, order_id: str | None = None) -> list[str]:
        return [n["event_type"] for n in self.sent if order_id is None or n["order_id"] == order_id]
