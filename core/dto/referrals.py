"""Referral ledger DTOs for request validation."""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from app.config import settings
from core.exceptions import ValidationError
from database.models import (
    EarningStatus,
    EarningType,
    PaymentMethod,
    PaymentModel,
    PayoutStatus,
    ReferrerClass,
    TransactionType,
)

DTOType = TypeVar("DTOType", bound=BaseModel)


def _normalize_currency(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = v.strip().upper()
    if len(v) != 3 or not v.isalpha():
        raise ValueError("currency must be a 3-letter ISO code")
    return v


class _CamelModel(BaseModel):
    """Accepts both the camelCase API names and the snake_case field names."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class SignupDTO(_CamelModel):
    """DTO for attributing a new user to a referral code."""

    referred_user_id: str = Field(..., alias="referredUserId", min_length=1, max_length=64)
    referral_code: str = Field(..., alias="referralCode", min_length=1, max_length=64)


class InitializeReferrerDTO(_CamelModel):
    """DTO for setting up a new referrer."""

    referrer_id: str = Field(..., alias="userId", min_length=1, max_length=64)
    referrer_class: ReferrerClass = Field(ReferrerClass.NORMAL, alias="userType")


class CreditEarningDTO(_CamelModel):
    """DTO for an upstream purchase event."""

    referred_user_id: str = Field(..., alias="referredUserId", min_length=1, max_length=64)
    transaction_id: str = Field(..., alias="transactionId", min_length=1, max_length=128)
    transaction_type: TransactionType = Field(..., alias="transactionType")
    gross_amount: Decimal = Field(..., alias="grossAmount", ge=0, max_digits=18, decimal_places=4)
    currency: Optional[str] = Field(None, description="Defaults to settings.default_currency")
    referrer_id: Optional[str] = Field(None, alias="referrerId", max_length=64)

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: Optional[str]) -> Optional[str]:
        return _normalize_currency(v)


class CreatePayoutRequestDTO(_CamelModel):
    """DTO for a referrer's payout request."""

    requested_amount: Decimal = Field(..., alias="requestedAmount", gt=0, max_digits=18, decimal_places=4)
    currency: Optional[str] = Field(None, description="Defaults to settings.default_currency")
    payment_method: PaymentMethod = Field(..., alias="paymentMethod")
    payment_details: dict[str, Any] = Field(..., alias="paymentDetails")

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: Optional[str]) -> Optional[str]:
        return _normalize_currency(v)

    @field_validator("payment_details")
    @classmethod
    def validate_details(cls, v: dict[str, Any]) -> dict[str, Any]:
        if not v:
            raise ValueError("payment details are required")
        return v


class ProcessPayoutDTO(_CamelModel):
    """DTO for an administrator resolving a payout request."""

    status: PayoutStatus
    admin_note: Optional[str] = Field(None, alias="adminNote", max_length=1000)

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: PayoutStatus) -> PayoutStatus:
        """A request can never be moved back to pending."""
        if v == PayoutStatus.PENDING:
            raise ValueError("status must be approved, rejected, paid or cancelled")
        return v


class UpdateCommissionSettingsDTO(_CamelModel):
    """DTO for an administrator overriding a referrer's commission settings."""

    initial_rate: Optional[Decimal] = Field(None, alias="initialCommissionRate", ge=0, le=100, decimal_places=2)
    recurring_rate: Optional[Decimal] = Field(None, alias="recurringCommissionRate", ge=0, le=100, decimal_places=2)
    payment_model: Optional[PaymentModel] = Field(None, alias="paymentModel")
    active: Optional[bool] = Field(None, alias="isActive")
    referrer_class: Optional[ReferrerClass] = Field(None, alias="userType")


class CancelEarningDTO(_CamelModel):
    """DTO for reversing an earning (refund or chargeback)."""

    reason: Optional[str] = Field(None, max_length=500)


class PaginationDTO(_CamelModel):
    """Page/limit query parameters."""

    page: int = Field(1, ge=1)
    limit: int = Field(default_factory=lambda: settings.default_page_size, ge=1)

    @field_validator("limit")
    @classmethod
    def clamp_limit(cls, v: int) -> int:
        return min(v, settings.max_page_size)


class EarningFiltersDTO(PaginationDTO):
    """Query parameters for a referrer's earnings list."""

    status: Optional[EarningStatus] = None
    earning_type: Optional[EarningType] = Field(None, alias="earningType")
    date_from: Optional[datetime] = Field(None, alias="dateFrom")
    date_to: Optional[datetime] = Field(None, alias="dateTo")

    @field_validator("date_from", "date_to")
    @classmethod
    def to_naive_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Stored timestamps are naive UTC."""
        if v is not None and v.tzinfo is not None:
            v = v.astimezone(timezone.utc).replace(tzinfo=None)
        return v


class PayoutFiltersDTO(PaginationDTO):
    """Query parameters for the administrator payout queue."""

    status: Optional[PayoutStatus] = None


class ReferrerFiltersDTO(PaginationDTO):
    """Query parameters for the per-referrer performance list."""

    referrer_class: Optional[ReferrerClass] = Field(None, alias="userType")
    status: Optional[str] = Field(None, pattern="^(active|inactive)$")
    sort_by: str = Field(
        "earnings",
        alias="sortBy",
        pattern="^(earnings|referrals|conversion_rate|recent_activity)$",
    )
    sort_order: str = Field("desc", alias="sortOrder", pattern="^(asc|desc)$")


def parse_dto(dto_class: Type[DTOType], data: Any) -> DTOType:
    """
    Validate ``data`` against ``dto_class``.

    Raises:
        ValidationError: Naming the first offending field
    """
    try:
        return dto_class.model_validate(data or {})
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or "body"
        raise ValidationError(field, first.get("msg", "invalid value")) from e
