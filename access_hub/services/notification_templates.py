from access_hub.config import settings


def _grace_phrase() -> str:
    days = settings.GRACE_PERIOD_DAYS
    return f"{days} day{'s' if days != 1 else ''}"


def subscription_approved(user_name: str, plan_name: str, access_code: str) -> str:
    return (
        f"Hi {user_name}, your {plan_name} subscription is now active. "
        f"Your access code is {access_code}."
    )


def payment_rejected(user_name: str, reason: str | None) -> str:
    return (
        f"Hi {user_name}, there was an issue with your subscription payment. "
        f"Reason: \"{reason or 'not specified'}\". Please submit a new receipt."
    )


def subscription_expiring_soon(user_name: str, plan_name: str, access_code: str, minutes: int) -> str:
    return (
        f"Hi {user_name}, your {plan_name} subscription (code {access_code}) "
        f"expires in less than {minutes} minutes."
    )


def subscription_expired(user_name: str, plan_name: str) -> str:
    return f"Hi {user_name}, your {plan_name} subscription has expired. Renew to keep your access."


def grace_period_started(user_name: str, plan_name: str, grace_end: str) -> str:
    return (
        f"Hi {user_name}, your {plan_name} subscription has ended. You keep access for a "
        f"{_grace_phrase()} grace period until {grace_end}. Renew before then to avoid interruption."
    )
