"""Referral link and attribution models."""
from datetime import datetime

from sqlalchemy import String, Integer, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from database.base import Base, BigIntPK


class ReferralLink(Base):
    """One shareable referral code per referrer, with click/conversion counters."""

    __tablename__ = "referral_links"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    referrer_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        comment="User who owns the link"
    )
    code: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        comment="Public referral code"
    )

    # Counters are only changed through atomic UPDATE ... SET x = x + 1
    clicks: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0"
    )
    conversions: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0"
    )
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
        nullable=False
    )

    def to_dict(self) -> dict:
        return {
            "referrerId": self.referrer_id,
            "referralCode": self.code,
            "clicks": self.clicks,
            "conversions": self.conversions,
            "lastUsed": self.last_used_at.isoformat() if self.last_used_at else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<ReferralLink(referrer={self.referrer_id}, code='{self.code}')>"


class ReferralAttribution(Base):
    """
    "Referred by" stamp for a user.

    The user record lives in the identity service; the ledger keeps its own
    copy of who referred whom so purchases can be attributed.
    """

    __tablename__ = "referral_attributions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    referred_user_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        comment="User who signed up through a referral link"
    )
    referrer_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
        comment="Owner of the referral link"
    )
    referral_code: Mapped[str] = mapped_column(String(64), nullable=False)
    referred_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
        nullable=False,
        index=True
    )

    def __repr__(self) -> str:
        return f"<ReferralAttribution(referred={self.referred_user_id}, referrer={self.referrer_id})>"
