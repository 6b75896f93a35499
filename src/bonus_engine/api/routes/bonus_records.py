"""Bonus record API endpoints: listing, lifecycle actions and summaries."""

from datetime import date
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, HTTPException, Path, Query, status

from bonus_engine.api.dependencies import AppSettings, BusinessId, CurrentActor, DbSession
from bonus_engine.api.schemas import (
    BonusRecordListResponse,
    BonusRecordResponse,
    BonusSummaryResponse,
    BulkActionResponse,
    ErrorResponse,
    MarkPaidRequest,
    RecordIdsRequest,
    RejectRequest,
    ShopBonusSummaryResponse,
    StaffBonusSummaryResponse,
    StaffBreakdownResponse,
    StaffRuleResponse,
    TargetCalculationResponse,
)
from bonus_engine.calculators.period_resolver import local_now
from bonus_engine.services.record_service import BonusRecordService, RecordFilters
from bonus_engine.services.results import ActionResult
from bonus_engine.services.state_machine import BonusRecordStatus

router = APIRouter(tags=["bonus-records"])


def _bulk_response(result: ActionResult) -> BulkActionResponse:
    if not result.success:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.error)
    return BulkActionResponse(updated=result.data["updated"])


# ============================================================================
# Listing
# ============================================================================


@router.get(
    "/bonus-records",
    response_model=BonusRecordListResponse,
    responses={400: {"model": ErrorResponse}},
)
async def list_bonus_records(
    db: DbSession,
    business_id: BusinessId,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    staff_member_id: UUID | None = None,
    shop_id: Annotated[str | None, Query()] = None,
    trigger_type: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
) -> BonusRecordListResponse:
    """List records newest first. ``all`` is accepted for any string filter."""
    if shop_id and shop_id != "all":
        try:
            shop_filter: UUID | None = UUID(shop_id)
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid shop_id format",
            )
    else:
        shop_filter = None

    views = await BonusRecordService(db).list_records(
        business_id,
        RecordFilters(
            status=status_filter,
            staff_member_id=staff_member_id,
            shop_id=shop_filter,
            trigger_type=trigger_type,
            start_date=start_date,
            end_date=end_date,
        ),
    )
    items = [BonusRecordResponse.from_view(v) for v in views]
    return BonusRecordListResponse(items=items, total=len(items))


@router.get(
    "/bonus-records/summary",
    response_model=BonusSummaryResponse,
    responses={400: {"model": ErrorResponse}},
)
async def get_bonus_summary(
    db: DbSession,
    business_id: BusinessId,
    settings: AppSettings,
) -> BonusSummaryResponse:
    """Business-wide rule and record statistics."""
    stats = await BonusRecordService(db).get_summary(
        business_id, now=local_now(settings.bonus_timezone)
    )
    return BonusSummaryResponse.model_validate(stats)


# ============================================================================
# Lifecycle actions
# ============================================================================


@router.post(
    "/bonus-records/approve",
    response_model=BulkActionResponse,
    responses={400: {"model": ErrorResponse}},
)
async def approve_bonus_records(
    db: DbSession,
    business_id: BusinessId,
    actor: CurrentActor,
    payload: RecordIdsRequest,
) -> BulkActionResponse:
    """Approve PENDING records. Records in other statuses are skipped."""
    result = await BonusRecordService(db).approve_records(
        business_id, actor, payload.record_ids
    )
    return _bulk_response(result)


@router.post(
    "/bonus-records/mark-paid",
    response_model=BulkActionResponse,
    responses={400: {"model": ErrorResponse}},
)
async def mark_bonus_records_paid(
    db: DbSession,
    business_id: BusinessId,
    actor: CurrentActor,
    payload: MarkPaidRequest,
) -> BulkActionResponse:
    """Mark PENDING or APPROVED records as paid."""
    result = await BonusRecordService(db).mark_paid(
        business_id, actor, payload.record_ids, payment_ref=payload.payment_ref
    )
    return _bulk_response(result)


@router.post(
    "/bonus-records/reject",
    response_model=BulkActionResponse,
    responses={400: {"model": ErrorResponse}},
)
async def reject_bonus_records(
    db: DbSession,
    business_id: BusinessId,
    actor: CurrentActor,
    payload: RejectRequest,
) -> BulkActionResponse:
    """Reject PENDING or APPROVED records with an optional reason."""
    result = await BonusRecordService(db).reject_records(
        business_id, actor, payload.record_ids, reason=payload.reason
    )
    return _bulk_response(result)


@router.post(
    "/bonus-records/calculate-targets",
    response_model=TargetCalculationResponse,
    responses={400: {"model": ErrorResponse}},
)
async def calculate_target_bonuses(
    db: DbSession,
    business_id: BusinessId,
    actor: CurrentActor,
    settings: AppSettings,
) -> TargetCalculationResponse:
    """Evaluate target-based rules for the current periods."""
    result = await BonusRecordService(db).calculate_target_bonuses(
        business_id,
        actor=actor,
        timezone=settings.bonus_timezone,
        apply_tiers=settings.target_apply_tiers,
    )
    if not result.success:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.error)
    return TargetCalculationResponse(**result.data)


# ============================================================================
# Summaries
# ============================================================================


@router.get(
    "/staff/{staff_member_id}/bonus-summary",
    response_model=StaffBonusSummaryResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_staff_bonus_summary(
    db: DbSession,
    business_id: BusinessId,
    settings: AppSettings,
    staff_member_id: Annotated[UUID, Path()],
) -> StaffBonusSummaryResponse:
    """Rules applying to a staff member and what they have earned."""
    summary = await BonusRecordService(db).get_staff_summary(
        business_id, staff_member_id, now=local_now(settings.bonus_timezone)
    )
    if summary is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Staff member not found",
        )

    return StaffBonusSummaryResponse(
        has_active_bonuses=summary.has_active_bonuses,
        active_rules=[StaffRuleResponse.model_validate(r) for r in summary.active_rules],
        records=[BonusRecordResponse.from_view(v) for v in summary.records],
        total_earned=summary.total_earned,
        total_pending=summary.total_pending,
        total_approved=summary.total_approved,
        total_paid=summary.total_paid,
        this_month_earned=summary.this_month_earned,
    )


@router.get(
    "/shops/{shop_id}/bonus-summary",
    response_model=ShopBonusSummaryResponse,
    responses={400: {"model": ErrorResponse}},
)
async def get_shop_bonus_summary(
    db: DbSession,
    business_id: BusinessId,
    settings: AppSettings,
    shop_id: Annotated[UUID, Path()],
) -> ShopBonusSummaryResponse:
    """Bonus overview for a shop with a per-staff breakdown."""
    summary = await BonusRecordService(db).get_shop_summary(
        business_id, shop_id, now=local_now(settings.bonus_timezone)
    )
    totals = summary.totals

    return ShopBonusSummaryResponse(
        has_active_bonuses=summary.has_active_bonuses,
        active_rules=summary.active_rules,
        pending_count=totals.count(BonusRecordStatus.PENDING),
        pending_amount=totals.amount(BonusRecordStatus.PENDING),
        approved_count=totals.count(BonusRecordStatus.APPROVED),
        approved_amount=totals.amount(BonusRecordStatus.APPROVED),
        paid_count=totals.count(BonusRecordStatus.PAID),
        paid_amount=totals.amount(BonusRecordStatus.PAID),
        this_month_amount=summary.this_month_amount,
        staff_bonuses=[
            StaffBreakdownResponse.model_validate(s) for s in summary.staff_bonuses
        ],
        recent_records=[BonusRecordResponse.from_view(v) for v in summary.recent_records],
    )
