"""HTTP API handlers for referrers, administrators and internal services."""
import json
import logging
from datetime import datetime
from typing import Any, Callable

from aiohttp import web
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.dto import (
    CancelEarningDTO,
    CreatePayoutRequestDTO,
    CreditEarningDTO,
    EarningFiltersDTO,
    InitializeReferrerDTO,
    PaginationDTO,
    PayoutFiltersDTO,
    ProcessPayoutDTO,
    ReferrerFiltersDTO,
    SignupDTO,
    UpdateCommissionSettingsDTO,
    parse_dto,
)
from core.exceptions import ValidationError
from services.commission_settings import CommissionSettingsService
from services.earning_ledger import EarningLedgerService
from services.notifications import ReferralNotifier
from services.payout_lifecycle import PayoutLifecycleService
from services.payout_reservation import PayoutReservationService
from services.referral_links import ReferralLinkService
from services.referral_overview import ReferralOverviewService

logger = logging.getLogger(__name__)

SESSION_MAKER = web.AppKey("session_maker", async_sessionmaker)
CLOCK = web.AppKey("clock")
NOTIFIER = web.AppKey("notifier", ReferralNotifier)


def setup_routes(app: web.Application):
    """Register all API routes."""
    app.router.add_get('/health', health_check)

    # Public
    app.router.add_get('/api/referrals/track/{code}', track_click)
    app.router.add_post('/api/referrals/signup', record_signup)

    # Referrer
    app.router.add_get('/api/referrals/dashboard', get_dashboard)
    app.router.add_get('/api/referrals/link', get_referral_link)
    app.router.add_get('/api/referrals/earnings', list_earnings)
    app.router.add_post('/api/referrals/payouts', create_payout_request)
    app.router.add_get('/api/referrals/payouts', list_payout_requests)

    # Admin
    app.router.add_get('/api/referrals/admin/overview', admin_overview)
    app.router.add_get('/api/referrals/admin/referrers', admin_referrers)
    app.router.add_get('/api/referrals/admin/payouts', admin_payout_requests)
    app.router.add_patch('/api/referrals/admin/payouts/{id}', admin_process_payout)
    app.router.add_patch('/api/referrals/admin/users/{id}/commission', admin_update_commission)
    app.router.add_post('/api/referrals/admin/earnings/{id}/cancel', admin_cancel_earning)

    # Internal (service-to-service)
    app.router.add_post('/api/internal/referrals/init', internal_initialize_referrer)
    app.router.add_post('/api/internal/referrals/earnings', internal_credit_earning)


# ========== Helpers ==========

def _session(request: web.Request) -> AsyncSession:
    return request.app[SESSION_MAKER]()


def _clock(request: web.Request) -> Callable[[], datetime]:
    return request.app[CLOCK]


def ok(data: Any, status: int = 200) -> web.Response:
    return web.json_response({"success": True, "data": data}, status=status)


async def read_json(request: web.Request) -> dict:
    """Parse the JSON request body."""
    if not request.can_read_body:
        return {}
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("body", "invalid JSON")
    if not isinstance(body, dict):
        raise ValidationError("body", "expected a JSON object")
    return body


def int_param(request: web.Request, name: str = "id") -> int:
    try:
        return int(request.match_info[name])
    except (KeyError, ValueError):
        raise ValidationError(name, "must be an integer")


# ========== Public ==========

async def health_check(request: web.Request):
    """Liveness probe."""
    return web.json_response({"status": "ok"})


async def track_click(request: web.Request):
    code = request.match_info["code"]
    async with _session(request) as session:
        link = await ReferralLinkService(session, clock=_clock(request)).track_click(code)
        return ok({"referralCode": link.code, "clicks": link.clicks})


async def record_signup(request: web.Request):
    data = parse_dto(SignupDTO, await read_json(request))
    async with _session(request) as session:
        referrer_id = await ReferralLinkService(session, clock=_clock(request)).record_signup(
            data.referred_user_id, data.referral_code
        )
        return ok({"referredUserId": data.referred_user_id, "referrerId": referrer_id})


# ========== Referrer ==========

async def get_dashboard(request: web.Request):
    async with _session(request) as session:
        dashboard = await ReferralOverviewService(session, clock=_clock(request)).get_dashboard(
            request["user_id"]
        )
        return ok(dashboard)


async def get_referral_link(request: web.Request):
    async with _session(request) as session:
        link = await ReferralLinkService(session, clock=_clock(request)).get_or_create(
            request["user_id"]
        )
        return ok(link.to_dict())


async def list_earnings(request: web.Request):
    filters = parse_dto(EarningFiltersDTO, dict(request.query))
    async with _session(request) as session:
        result = await EarningLedgerService(session, clock=_clock(request)).list_earnings(
            request["user_id"],
            page=filters.page,
            limit=filters.limit,
            status=filters.status,
            earning_type=filters.earning_type,
            date_from=filters.date_from,
            date_to=filters.date_to,
        )
        return ok(result)


async def create_payout_request(request: web.Request):
    data = parse_dto(CreatePayoutRequestDTO, await read_json(request))
    async with _session(request) as session:
        payout = await PayoutReservationService(
            session, clock=_clock(request), notifier=request.app[NOTIFIER]
        ).request_payout(
            request["user_id"],
            data.requested_amount,
            data.currency,
            data.payment_method,
            data.payment_details,
        )
        return ok(payout.to_dict(), status=201)


async def list_payout_requests(request: web.Request):
    paging = parse_dto(PaginationDTO, dict(request.query))
    async with _session(request) as session:
        result = await PayoutReservationService(session, clock=_clock(request)).list_payout_requests(
            request["user_id"], page=paging.page, limit=paging.limit
        )
        return ok(result)


# ========== Admin ==========

async def admin_overview(request: web.Request):
    async with _session(request) as session:
        return ok(await ReferralOverviewService(session, clock=_clock(request)).get_overview())


async def admin_referrers(request: web.Request):
    filters = parse_dto(ReferrerFiltersDTO, dict(request.query))
    async with _session(request) as session:
        result = await ReferralOverviewService(session, clock=_clock(request)).list_referrers(
            referrer_class=filters.referrer_class,
            status=filters.status,
            sort_by=filters.sort_by,
            sort_order=filters.sort_order,
            page=filters.page,
            limit=filters.limit,
        )
        return ok(result)


async def admin_payout_requests(request: web.Request):
    filters = parse_dto(PayoutFiltersDTO, dict(request.query))
    async with _session(request) as session:
        result = await PayoutReservationService(session, clock=_clock(request)).list_all_payout_requests(
            status=filters.status, page=filters.page, limit=filters.limit
        )
        return ok(result)


async def admin_process_payout(request: web.Request):
    payout_id = int_param(request)
    data = parse_dto(ProcessPayoutDTO, await read_json(request))
    async with _session(request) as session:
        payout = await PayoutLifecycleService(
            session, clock=_clock(request), notifier=request.app[NOTIFIER]
        ).process_payout_request(
            payout_id, data.status, admin_id=request["user_id"], admin_note=data.admin_note
        )
        return ok(payout.to_dict())


async def admin_update_commission(request: web.Request):
    referrer_id = request.match_info["id"]
    data = parse_dto(UpdateCommissionSettingsDTO, await read_json(request))
    async with _session(request) as session:
        settings = await CommissionSettingsService(session, clock=_clock(request)).update_rates(
            referrer_id,
            admin_id=request["user_id"],
            initial_rate=data.initial_rate,
            recurring_rate=data.recurring_rate,
            payment_model=data.payment_model,
            active=data.active,
            referrer_class=data.referrer_class,
        )
        return ok(settings.to_dict())


async def admin_cancel_earning(request: web.Request):
    earning_id = int_param(request)
    data = parse_dto(CancelEarningDTO, await read_json(request))
    async with _session(request) as session:
        earning = await EarningLedgerService(session, clock=_clock(request)).cancel_earning(
            earning_id, admin_id=request["user_id"], reason=data.reason
        )
        return ok(earning.to_dict())


# ========== Internal ==========

async def internal_initialize_referrer(request: web.Request):
    data = parse_dto(InitializeReferrerDTO, await read_json(request))
    async with _session(request) as session:
        settings = await CommissionSettingsService(session, clock=_clock(request)).initialize_for_referrer(
            data.referrer_id, data.referrer_class
        )
        return ok(settings.to_dict())


async def internal_credit_earning(request: web.Request):
    data = parse_dto(CreditEarningDTO, await read_json(request))
    async with _session(request) as session:
        result = await EarningLedgerService(session, clock=_clock(request)).credit_earning(
            referred_user_id=data.referred_user_id,
            transaction_id=data.transaction_id,
            transaction_type=data.transaction_type,
            gross_amount=data.gross_amount,
            currency=data.currency,
            referrer_id=data.referrer_id,
        )
        return ok(result.to_dict(), status=201 if result.created else 200)
