"""Payout request model."""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import String, Numeric, DateTime, Text, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from core.money import money_to_json
from database.base import Base, BigIntPK


class PayoutStatus(str, Enum):
    """Payout request status."""
    PENDING = "pending"  # Created by the referrer, earnings reserved
    APPROVED = "approved"  # Accepted by an administrator, awaiting disbursement
    REJECTED = "rejected"  # Terminal, earnings released
    PAID = "paid"  # Terminal, earnings paid
    CANCELLED = "cancelled"  # Terminal, earnings released


class PaymentMethod(str, Enum):
    """How the referrer wants to be paid."""
    PAYPAL = "paypal"
    BANK_TRANSFER = "bank_transfer"
    STRIPE = "stripe"


class PayoutRequest(Base):
    """A referrer's request to be paid, holding the reserved earnings."""

    __tablename__ = "referral_payout_requests"
    __table_args__ = (
        Index("ix_referral_payout_requests_referrer_status", "referrer_id", "status"),
        Index("ix_referral_payout_requests_status_created", "status", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    referrer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    requested_amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    reserved_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 4),
        nullable=False,
        comment="Sum of reserved earnings, >= requested_amount"
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    # FIFO-ordered ids of the reserved earnings
    earning_ids: Mapped[list[int]] = mapped_column(JSON, nullable=False, default=list)

    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=PayoutStatus.PENDING.value,
        comment="pending/approved/rejected/paid/cancelled"
    )
    payment_method: Mapped[str] = mapped_column(String(32), nullable=False)
    payment_details: Mapped[Any] = mapped_column(JSON, nullable=False)

    admin_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    processed_by: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

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

    def to_dict(self, include_details: bool = True) -> dict:
        data = {
            "id": self.id,
            "referrerId": self.referrer_id,
            "requestedAmount": money_to_json(self.requested_amount, self.currency),
            "reservedAmount": money_to_json(self.reserved_amount, self.currency),
            "currency": self.currency,
            "earningIds": list(self.earning_ids or []),
            "status": self.status,
            "paymentMethod": self.payment_method,
            "adminNote": self.admin_note,
            "processedAt": self.processed_at.isoformat() if self.processed_at else None,
            "processedBy": self.processed_by,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
        if include_details:
            data["paymentDetails"] = self.payment_details
        return data

    def __repr__(self) -> str:
        return (
            f"<PayoutRequest(id={self.id}, referrer={self.referrer_id}, "
            f"amount={self.requested_amount} {self.currency}, status='{self.status}')>"
        )
