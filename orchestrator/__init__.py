"""Order orchestration: job store, order queue, notifications and the order service."""

from .notification import (
    BaseNotifier,
    LogNotifier,
    NotifierGroup,
    OrderNotification,
    WebhookNotifier,
    create_notifier,
)
from .queue import OrderQueue
from .service import (
    OrderOrchestrator,
    build_orchestrator,
    get_default_orchestrator,
    get_job_status,
    list_orders,
    retry_job,
    submit_order,
)
from .store import (
    InMemoryJobStore,
    JobStore,
    JsonFileJobStore,
    create_job_store,
    write_with_retry,
)

__all__ = [
    "BaseNotifier",
    "LogNotifier",
    "NotifierGroup",
    "OrderNotification",
    "WebhookNotifier",
    "create_notifier",
    "OrderQueue",
    "OrderOrchestrator",
    "build_orchestrator",
    "get_default_orchestrator",
    "get_job_status",
    "list_orders",
    "retry_job",
    "submit_order",
    "InMemoryJobStore",
    "JobStore",
    "JsonFileJobStore",
    "create_job_store",
    "write_with_retry",
]
