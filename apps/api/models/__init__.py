"""Models package."""

from .user import User
from .allowance_period import AllowancePeriod
from .payment import Payment
from .redemption_code import RedemptionCode
from .partner import Partner
