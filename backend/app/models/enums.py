from enum import Enum

# Stored as strings with DB check constraints (native enums disabled for easier evolution).


class AffiliateTierEnum(str, Enum):
    QUIZ = "quiz"
    CREATOR = "creator"
    AGENCY = "agency"


class ClickSourceEnum(str, Enum):
    # Each source has its own dedup window.
    REDIRECT = "redirect"
    HOMEPAGE = "homepage"
    CUSTOM_LINK = "custom_link"


class ConversionTypeEnum(str, Enum):
    QUIZ_COMPLETION = "quiz_completion"
    BOOKING = "booking"
    SALE = "sale"


class ConversionStatusEnum(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class CommissionStatusEnum(str, Enum):
    HELD = "held"
    AVAILABLE = "available"
    PAID = "paid"
    FORFEITED = "forfeited"


class PayoutStatusEnum(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class AppointmentStatusEnum(str, Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    RESCHEDULED = "rescheduled"


class AppointmentOutcomeEnum(str, Enum):
    CONVERTED = "converted"
    NOT_INTERESTED = "not_interested"
    NEEDS_FOLLOW_UP = "needs_follow_up"
    WRONG_NUMBER = "wrong_number"
    NO_ANSWER = "no_answer"
    CALLBACK_REQUESTED = "callback_requested"
    RESCHEDULED = "rescheduled"


def enum_values(enum_cls) -> tuple[str, ...]:
    return tuple(member.value for member in enum_cls)
