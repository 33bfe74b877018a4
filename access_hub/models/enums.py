from enum import Enum

class Role(str, Enum):
    CUSTOMER = "CUSTOMER"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"

class TimeUnit(str, Enum):
    MINUTES = "MINUTES"
    HOURS = "HOURS"
    DAYS = "DAYS"
    WEEK = "WEEK"
    MONTH = "MONTH"
    YEAR = "YEAR"

class PlanType(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"

class TimeSlot(str, Enum):
    MORNING = "MORNING"
    AFTERNOON = "AFTERNOON"
    NIGHT = "NIGHT"
    ALL = "ALL"

class AccessAction(str, Enum):
    ENTRY = "ENTRY"
    EXIT = "EXIT"

class ValidationResult(str, Enum):
    SUCCESS = "SUCCESS"
    DENIED = "DENIED"
    EXPIRED = "EXPIRED"
    INVALID_TIME = "INVALID_TIME"
    CAPACITY_FULL = "CAPACITY_FULL"
