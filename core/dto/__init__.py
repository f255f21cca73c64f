"""
Data Transfer Objects (DTOs) for data validation.

This package contains Pydantic models for validating input data.
"""

from core.dto.referrals import (
    SignupDTO,
    InitializeReferrerDTO,
    CreditEarningDTO,
    CreatePayoutRequestDTO,
    ProcessPayoutDTO,
    UpdateCommissionSettingsDTO,
    CancelEarningDTO,
    PaginationDTO,
    EarningFiltersDTO,
    PayoutFiltersDTO,
    ReferrerFiltersDTO,
    parse_dto,
)

__all__ = [
    'SignupDTO',
    'InitializeReferrerDTO',
    'CreditEarningDTO',
    'CreatePayoutRequestDTO',
    'ProcessPayoutDTO',
    'UpdateCommissionSettingsDTO',
    'CancelEarningDTO',
    'PaginationDTO',
    'EarningFiltersDTO',
    'PayoutFiltersDTO',
    'ReferrerFiltersDTO',
    'parse_dto',
]
