"""Order notifications: a local jsonl log and an optional chat webhook."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import httpx

from config import NotificationSettings
from core import JobRecord, Order, Progress


logger = logging.getLogger(__name__)


def _utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass
class OrderNotification:
    """Summary of a processed order."""

    order_id: str
    order_number: str
    user_email: Optional[str]
    jobs: List[Dict[str, Any]] = field(default_factory=list)
    created_at: str = field(default_factory=_utc_iso)

    @classmethod
    def from_records(cls, order: Order, records: Sequence[JobRecord]) -> "OrderNotification":
        jobs = [
            {
                "job_id": record.job_id,
                "topic": record.job.topic,
                "progress": record.progress.value if record.progress else None,
                "failed_stage": record.failed_stage,
                "error": record.error,
            }
            for record in records
        ]
        return cls(
            order_id=order.order_id,
            order_number=order.order_number or order.order_id,
            user_email=order.user_email,
            jobs=jobs,
        )

    @property
    def failed(self) -> List[Dict[str, Any]]:
        return [job for job in self.jobs if job["progress"] == Progress.ERROR.value]

    @property
    def subject(self) -> str:
        return f"Order {self.order_number} is ready"

    @property
    def message(self) -> str:
        done = len(self.jobs) - len(self.failed)
        text = f"Order {self.order_number}: {done}/{len(self.jobs)} texts generated."
        if self.failed:
            text += " Failed: " + ", ".join(f"{job['topic']} ({job['failed_stage']})" for job in self.failed)
        return text

    def to_payload(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["subject"] = self.subject
        payload["message"] = self.message
        return payload


class BaseNotifier(ABC):
    """A notification channel. ``send`` may raise; callers decide what a failure means."""

    @property
    @abstractmethod
    def channel(self) -> str:
        pass

    @abstractmethod
    async def send(self, notification: OrderNotification) -> Dict[str, Any]:
        pass


class LogNotifier(BaseNotifier):
    """Logs the notification and appends it to ``notifications.jsonl`` when a directory is set."""

    def __init__(self, out_dir: str | Path | None = None):
        self.out_dir = Path(out_dir) if out_dir else None

    @property
    def channel(self) -> str:
        return "log"

    async def send(self, notification: OrderNotification) -> Dict[str, Any]:
        entry = {
            "channel": self.channel,
            "payload": notification.to_payload(),
            "sent_at": _utc_iso(),
            "status": "ok",
        }
        if self.out_dir:
            self.out_dir.mkdir(parents=True, exist_ok=True)
            log_path = self.out_dir / "notifications.jsonl"
            with log_path.open("a", encoding="utf-8") as fh:
                fh.write(json.dumps(entry, ensure_ascii=False) + "\n")
            entry["log_path"] = str(log_path)
        logger.info("order_notification order_id=%s message=%r", notification.order_id, notification.message)
        return entry


class WebhookNotifier(BaseNotifier):
    """Posts ``{"text": ...}`` to a Slack-compatible incoming webhook."""

    def __init__(self, url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.timeout = timeout
        self._client = client

    @property
    def channel(self) -> str:
        return "webhook"

    async def send(self, notification: OrderNotification) -> Dict[str, Any]:
        body = {"text": notification.message, "order": notification.to_payload()}
        if self._client is not None:
            response = await self._client.post(self.url, json=body, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.url, json=body)
        response.raise_for_status()
        return {"channel": self.channel, "status": "ok", "status_code": response.status_code, "sent_at": _utc_iso()}


class NotifierGroup(BaseNotifier):
    """Fans one notification out to several channels; one failing channel does not stop the rest."""

    def __init__(self, notifiers: Sequence[BaseNotifier]):
        self.notifiers = list(notifiers)

    @property
    def channel(self) -> str:
        return "+".join(n.channel for n in self.notifiers) or "none"

    async def send(self, notification: OrderNotification) -> Dict[str, Any]:
        results: List[Dict[str, Any]] = []
        for notifier in self.notifiers:
            try:
                results.append(await notifier.send(notification))
            except Exception as exc:
                logger.warning(
                    "notification_failed channel=%s order_id=%s error=%s",
                    notifier.channel,
                    notification.order_id,
                    exc,
                )
                results.append({"channel": notifier.channel, "status": "failed", "error": str(exc)})
        return {"channel": self.channel, "results": results}


def create_notifier(settings: Optional[NotificationSettings] = None) -> BaseNotifier:
    if settings is None:
        from config import get_settings

        settings = get_settings().notification
    notifiers: List[BaseNotifier] = [LogNotifier(settings.log_dir)]
    if settings.webhook_url:
        notifiers.append(WebhookNotifier(settings.webhook_url, timeout=settings.timeout))
    return NotifierGroup(notifiers)
