"""Per-referrer commission settings."""
from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import String, Boolean, Numeric, DateTime, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from database.base import Base, BigIntPK


class ReferrerClass(str, Enum):
    """Referrer tier; drives the default commission rates."""
    NORMAL = "normal"
    SUBSCRIBED = "subscribed"


class PaymentModel(str, Enum):
    """Whether commission is paid on every transaction or only the first."""
    RECURRING = "recurring"
    ONE_TIME = "one-time"


# (initial %, recurring %)
DEFAULT_RATES = {
    ReferrerClass.NORMAL: (Decimal("20"), Decimal("10")),
    ReferrerClass.SUBSCRIBED: (Decimal("40"), Decimal("20")),
}


class CommissionSettings(Base):
    """Commission configuration for one referrer."""

    __tablename__ = "commission_settings"
    __table_args__ = (
        CheckConstraint("initial_rate >= 0 AND initial_rate <= 100", name="ck_commission_initial_rate"),
        CheckConstraint("recurring_rate >= 0 AND recurring_rate <= 100", name="ck_commission_recurring_rate"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    referrer_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    referrer_class: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ReferrerClass.NORMAL.value,
        index=True,
        comment="normal/subscribed"
    )
    initial_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        nullable=False,
        comment="Percent applied to a referred user's first transaction"
    )
    recurring_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        nullable=False,
        comment="Percent applied to later transactions"
    )
    payment_model: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=PaymentModel.RECURRING.value,
        server_default=PaymentModel.RECURRING.value,
        comment="recurring/one-time"
    )
    active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default="true",
        index=True
    )
    custom_rates: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default="false",
        comment="Set once an administrator overrides a rate"
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
            "userId": self.referrer_id,
            "userType": self.referrer_class,
            "initialCommissionRate": float(self.initial_rate),
            "recurringCommissionRate": float(self.recurring_rate),
            "paymentModel": self.payment_model,
            "isActive": self.active,
            "customRates": self.custom_rates,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return (
            f"<CommissionSettings(referrer={self.referrer_id}, class='{self.referrer_class}', "
            f"rates={self.initial_rate}/{self.recurring_rate})>"
        )
