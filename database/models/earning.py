"""Earning ledger model: one commission row per upstream transaction."""
from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import String, Numeric, DateTime, Index, CheckConstraint, text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from core.money import money_to_json
from database.base import Base, BigIntPK


class TransactionType(str, Enum):
    """Kind of upstream transaction that produced the commission."""
    SUBSCRIPTION = "subscription"
    COURSE_PURCHASE = "course_purchase"
    UPGRADE = "upgrade"


class EarningType(str, Enum):
    """First transaction of a referred user vs. every later one."""
    INITIAL = "initial"
    RECURRING = "recurring"


class EarningStatus(str, Enum):
    """Earning lifecycle."""
    PENDING = "pending"  # Owed, not reserved by any payout request
    APPROVED = "approved"  # Reserved by an active payout request
    PAID = "paid"  # Terminal
    CANCELLED = "cancelled"  # Reversed by an administrator (refund/chargeback)


class Earning(Base):
    """
    Commission owed to a referrer for one transaction.

    Rate and amount are a snapshot taken at creation; only ``status``
    changes afterwards. Rows are never deleted.
    """

    __tablename__ = "referral_earnings"
    __table_args__ = (
        Index("ix_referral_earnings_referrer_status", "referrer_id", "status"),
        Index("ix_referral_earnings_eligible_status", "eligible_at", "status"),
        Index("ix_referral_earnings_pair", "referrer_id", "referred_user_id"),
        # At most one initial earning per referrer/referred user pair
        Index(
            "uq_referral_earnings_initial_pair",
            "referrer_id",
            "referred_user_id",
            unique=True,
            postgresql_where=text("earning_type = 'initial'"),
            sqlite_where=text("earning_type = 'initial'"),
        ),
        CheckConstraint("gross_amount >= 0", name="ck_referral_earnings_gross"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    referrer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    referred_user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    # Idempotency key for at-least-once upstream delivery
    transaction_id: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    transaction_type: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        comment="subscription/course_purchase/upgrade"
    )
    earning_type: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        comment="initial/recurring"
    )

    gross_amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    commission_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    earning_amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=EarningStatus.PENDING.value,
        comment="pending/approved/paid/cancelled"
    )
    eligible_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        comment="Earliest moment the earning may be reserved for payout"
    )

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
            "id": self.id,
            "referrerId": self.referrer_id,
            "referredUserId": self.referred_user_id,
            "transactionId": self.transaction_id,
            "transactionType": self.transaction_type,
            "earningType": self.earning_type,
            "grossAmount": money_to_json(self.gross_amount, self.currency),
            "commissionRate": float(self.commission_rate),
            "earningAmount": money_to_json(self.earning_amount, self.currency),
            "currency": self.currency,
            "status": self.status,
            "eligibleForPayoutAt": self.eligible_at.isoformat() if self.eligible_at else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return (
            f"<Earning(id={self.id}, referrer={self.referrer_id}, txn='{self.transaction_id}', "
            f"amount={self.earning_amount} {self.currency}, status='{self.status}')>"
        )
