"""Database repositories package."""
from database.repositories.referral_link import ReferralLinkRepository
from database.repositories.commission_settings import CommissionSettingsRepository
from database.repositories.earning import EarningRepository
from database.repositories.payout_request import PayoutRequestRepository

__all__ = [
    "ReferralLinkRepository",
    "CommissionSettingsRepository",
    "EarningRepository",
    "PayoutRequestRepository",
]
