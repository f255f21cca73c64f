"""Database models package."""
from database.models.referral_link import ReferralLink, ReferralAttribution
from database.models.commission_settings import (
    CommissionSettings,
    ReferrerClass,
    PaymentModel,
    DEFAULT_RATES,
)
from database.models.earning import Earning, EarningStatus, EarningType, TransactionType
from database.models.payout_request import PayoutRequest, PayoutStatus, PaymentMethod

__all__ = [
    "ReferralLink",
    "ReferralAttribution",
    "CommissionSettings",
    "ReferrerClass",
    "PaymentModel",
    "DEFAULT_RATES",
    "Earning",
    "EarningStatus",
    "EarningType",
    "TransactionType",
    "PayoutRequest",
    "PayoutStatus",
    "PaymentMethod",
]
