from access_hub.models.access import AccessLog
from access_hub.models.audit import AuditLog
from access_hub.models.notification import NotificationLog
from access_hub.models.plan import Plan
from access_hub.models.subscription import PaymentReceipt, Subscription
from access_hub.models.user import User


__all__ = [
    "AccessLog",
    "AuditLog",
    "NotificationLog",
    "PaymentReceipt",
    "Plan",
    "Subscription",
    "User",
]
