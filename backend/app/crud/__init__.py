from .affiliates import (
    create_affiliate,
    list_affiliates,
    get_affiliate,
    get_affiliate_by_code,
    get_affiliate_by_custom_link,
    update_affiliate,
    get_conversion,
    list_conversions_for_affiliate,
    get_payout,
    list_payouts_for_affiliate,
)
from .closers import (
    create_closer,
    get_closer,
    get_closer_by_email,
    list_closers,
    update_closer,
    create_appointment,
    get_appointment,
    list_appointments,
    update_appointment,
)
from .program_config import (
    get_effective_program_config,
    read_program_settings,
    upsert_program_config,
)

__all__ = [
    "create_affiliate",
    "list_affiliates",
    "get_affiliate",
    "get_affiliate_by_code",
    "get_affiliate_by_custom_link",
    "update_affiliate",
    "get_conversion",
    "list_conversions_for_affiliate",
    "get_payout",
    "list_payouts_for_affiliate",
    "create_closer",
    "get_closer",
    "get_closer_by_email",
    "list_closers",
    "update_closer",
    "create_appointment",
    "get_appointment",
    "list_appointments",
    "update_appointment",
    "get_effective_program_config",
    "read_program_settings",
    "upsert_program_config",
]
