from autorenew.models.account import Account
from autorenew.models.automation_config import AutomationConfig
from autorenew.models.automation_health import AutomationHealth
from autorenew.models.client import Client, ClientSlot
from autorenew.models.notification_suppression import (
    NotificationSuppression,
    NotificationType,
)
from autorenew.models.renewal_task import RenewalTask, TaskStatus

__all__ = [
    "Account",
    "AutomationConfig",
    "AutomationHealth",
    "Client",
    "ClientSlot",
    "NotificationSuppression",
    "NotificationType",
    "RenewalTask",
    "TaskStatus",
]
