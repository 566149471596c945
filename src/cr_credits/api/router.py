"""cr_credits REST API: system-of-record endpoints for one user's credits."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.cr_common.database import get_db_session
from src.cr_common.response import ApiResponse, success_response
from src.cr_credits.application.schemas import AdjustCreditsRequest, SetBalanceRequest
from src.cr_credits.application.service import CreditsLedgerService
from src.cr_credits.infrastructure.subscription import publish_balance_event

router = APIRouter(prefix="/credits", tags=["credits"])

_service = CreditsLedgerService(publisher=publish_balance_event)


def _respond(request: Request, data: object) -> ApiResponse:
    resp = success_response(data)
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp


@router.get("/{user_id}/balance")
async def get_balance(
    user_id: str,
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.get_balance(db, user_id)
    return _respond(request, data.model_dump())


@router.put("/{user_id}/balance")
async def set_balance(
    user_id: str,
    body: SetBalanceRequest,
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.set_balance(db, user_id, body.credits, body.description)
    return _respond(request, data.model_dump())


@router.delete("/{user_id}/balance")
async def delete_balance(
    user_id: str,
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    await _service.delete_balance(db, user_id)
    return _respond(request, {"user_id": user_id, "deleted": True})


@router.post("/{user_id}/add")
async def add_credits(
    user_id: str,
    body: AdjustCreditsRequest,
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.add_credits(
        db,
        user_id,
        body.amount,
        body.reason,
        description=body.description,
        metadata=body.metadata,
        reference_id=body.reference_id,
    )
    return _respond(request, data.model_dump())


@router.post("/{user_id}/deduct")
async def deduct_credits(
    user_id: str,
    body: AdjustCreditsRequest,
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.deduct_credits(
        db,
        user_id,
        body.amount,
        body.reason,
        description=body.description,
        metadata=body.metadata,
        reference_id=body.reference_id,
    )
    return _respond(request, data.model_dump())
