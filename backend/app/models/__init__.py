from .affiliates import (
    Affiliate,
    AffiliateClick,
    AffiliateConversion,
    AffiliatePayout,
    AffiliateProgramConfig,
)
from .closers import Appointment, Closer
