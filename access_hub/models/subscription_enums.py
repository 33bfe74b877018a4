from enum import Enum

class SubscriptionStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    IN_GRACE_PERIOD = "IN_GRACE_PERIOD"
    EXPIRED = "EXPIRED"

class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

class PaymentMethod(str, Enum):
    CASH = "CASH"
    CARD = "CARD"
    TRANSFER = "TRANSFER"


OPEN_STATUSES = (
    SubscriptionStatus.PENDING,
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.IN_GRACE_PERIOD,
)

# Forward-only lifecycle. PENDING -> EXPIRED covers an unpaid application whose window lapsed.
ALLOWED_TRANSITIONS: dict[SubscriptionStatus, frozenset[SubscriptionStatus]] = {
    SubscriptionStatus.PENDING: frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.EXPIRED}),
    SubscriptionStatus.ACTIVE: frozenset({SubscriptionStatus.IN_GRACE_PERIOD, SubscriptionStatus.EXPIRED}),
    SubscriptionStatus.IN_GRACE_PERIOD: frozenset({SubscriptionStatus.EXPIRED}),
    SubscriptionStatus.EXPIRED: frozenset(),
}
