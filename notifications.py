import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, Optional

import requests

from logging_config import get_logger

SESSION_STARTED = "session_started"
SESSION_ENDED = "session_ended"
CV_UPLOADED = "cv_uploaded"
SECURITY_ALERT = "security_alert"
ESCALATION_REQUESTED = "escalation_requested"


@dataclass
class NotificationEvent:
    type: str
    session_id: str
    severity: str = "info"
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class LoggingNotifier:
    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or get_logger("notifications")

    def notify(self, event: NotificationEvent) -> None:
        level = logging.WARNING if event.severity in {"high", "critical"} else logging.INFO
        self.logger.log(level, "notification type=%s session_id=%s severity=%s", event.type, event.session_id, event.severity)


class WebhookNotifier:
    """POST events as JSON from a worker thread. Delivery failures are logged, never raised."""

    def __init__(
        self,
        url: str,
        timeout: float = 5,
        session: Optional[requests.Session] = None,
        max_workers: int = 2,
        logger: Optional[logging.Logger] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.http = session or requests.Session()
        self.logger = logger or get_logger("notifications")
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="webhook")

    def notify(self, event: NotificationEvent) -> None:
        future = self._executor.submit(self._deliver, event.type, event.to_dict())
        future.add_done_callback(self._report_crash)

    def _deliver(self, event_type: str, payload: Dict[str, Any]) -> None:
        try:
            r = self.http.post(self.url, json=payload, timeout=self.timeout)
            if r.status_code >= 400:
                self.logger.warning("webhook_rejected type=%s status=%s", event_type, r.status_code)
        except requests.RequestException as exc:
            self.logger.warning("webhook_failed type=%s error=%s", event_type, exc)

    def _report_crash(self, future) -> None:
        if not future.cancelled() and future.exception() is not None:
            self.logger.error("webhook_crashed error=%s", future.exception())

    def close(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


class CompositeNotifier:
    def __init__(self, notifiers: Iterable):
        self.notifiers = list(notifiers)

    def notify(self, event: NotificationEvent) -> None:
        for n in self.notifiers:
            n.notify(event)


def notifier_from_env(logger: Optional[logging.Logger] = None):
    sinks = [LoggingNotifier(logger)]
    url = (os.getenv("NOTIFICATION_WEBHOOK_URL") or "").strip()
    if url:
        timeout = float(os.getenv("NOTIFICATION_TIMEOUT_SEC", "5"))
        sinks.append(WebhookNotifier(url, timeout=timeout, logger=logger))
    return CompositeNotifier(sinks)
