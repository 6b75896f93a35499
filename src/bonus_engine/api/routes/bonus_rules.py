"""Bonus rule API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, HTTPException, Path, status

from bonus_engine.api.dependencies import BusinessId, CurrentActor, DbSession
from bonus_engine.api.schemas import (
    BonusRuleCreate,
    BonusRuleResponse,
    BonusRuleUpdate,
    ErrorResponse,
    RuleCreatedResponse,
    RuleDeletedResponse,
)
from bonus_engine.services.results import ActionResult
from bonus_engine.services.rule_service import BonusRuleService

router = APIRouter(prefix="/bonus-rules", tags=["bonus-rules"])

RULE_NOT_FOUND = "Bonus rule not found"


def _raise_for(result: ActionResult) -> None:
    if result.success:
        return
    code = (
        status.HTTP_404_NOT_FOUND
        if result.error == RULE_NOT_FOUND
        else status.HTTP_400_BAD_REQUEST
    )
    raise HTTPException(status_code=code, detail=result.error)


@router.get(
    "",
    response_model=list[BonusRuleResponse],
    responses={400: {"model": ErrorResponse}},
)
async def list_bonus_rules(
    db: DbSession,
    business_id: BusinessId,
) -> list[BonusRuleResponse]:
    """List rules newest first with paid and outstanding statistics."""
    summaries = await BonusRuleService(db).list_rules(business_id)
    return [BonusRuleResponse.from_summary(s) for s in summaries]


@router.post(
    "",
    response_model=RuleCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}},
)
async def create_bonus_rule(
    db: DbSession,
    business_id: BusinessId,
    actor: CurrentActor,
    payload: BonusRuleCreate,
) -> RuleCreatedResponse:
    """Create a bonus rule."""
    result = await BonusRuleService(db).create_rule(business_id, actor, payload.to_fields())
    _raise_for(result)
    return RuleCreatedResponse(id=result.data["id"])


@router.patch(
    "/{rule_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def update_bonus_rule(
    db: DbSession,
    business_id: BusinessId,
    actor: CurrentActor,
    rule_id: Annotated[UUID, Path()],
    payload: BonusRuleUpdate,
) -> None:
    """Partially update a rule, including toggling it active or inactive."""
    result = await BonusRuleService(db).update_rule(
        business_id, actor, rule_id, payload.to_changes()
    )
    _raise_for(result)


@router.delete(
    "/{rule_id}",
    response_model=RuleDeletedResponse,
    responses={404: {"model": ErrorResponse}},
)
async def delete_bonus_rule(
    db: DbSession,
    business_id: BusinessId,
    actor: CurrentActor,
    rule_id: Annotated[UUID, Path()],
) -> RuleDeletedResponse:
    """Delete a rule, or deactivate it when records reference it."""
    result = await BonusRuleService(db).delete_rule(business_id, actor, rule_id)
    _raise_for(result)
    return RuleDeletedResponse(deactivated=result.data["deactivated"])
