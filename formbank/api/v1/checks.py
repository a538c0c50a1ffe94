"""Check endpoints - list, write, view and redeem"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from formbank.api.dependencies import get_check_service, get_current_user_id, get_optional_user_id, get_request_id
from formbank.api.errors import LOCKOUT_SUGGESTION, http_error_for
from formbank.api.v1.schemas import (
    CheckDetailResponse,
    CheckListResponse,
    CheckSchema,
    WriteCheckRequest,
    WriteCheckResponse,
)
from formbank.domain.models import CheckRedeemed
from formbank.infrastructure.database.models import Check
from formbank.workflows.checks import CheckService

router = APIRouter()


@router.get("/checks", response_model=CheckListResponse)
def list_checks(
    request: Request,
    user_id: int = Depends(get_current_user_id),
    checks: CheckService = Depends(get_check_service),
):
    """Checks the user wrote, plus completed checks paid to them"""
    try:
        rows = checks.list_checks(user_id)
    except Exception as e:
        raise http_error_for(e, get_request_id(request))
    return CheckListResponse(user_id=user_id, checks=[CheckSchema.model_validate(c) for c in rows])


@router.post("/checks/write", response_model=WriteCheckResponse)
async def write_check(
    request_body: WriteCheckRequest,
    request: Request,
    user_id: int = Depends(get_current_user_id),
    checks: CheckService = Depends(get_check_service),
):
    """
    Write a check to a receiver, or a blank check for whoever claims it first.

    The fee is charged at write time. A blank check's amount only moves when
    it is redeemed; a targeted check's amount moves after a short delay.
    """
    try:
        written = await checks.write_check(
            sender_id=user_id,
            receiver_id=request_body.receiver_id,
            amount=request_body.amount,
            secret=request_body.pin,
            memo=request_body.memo,
        )
    except Exception as e:
        raise http_error_for(e, get_request_id(request))

    return WriteCheckResponse(
        check_id=written.check_id,
        status=written.status,
        fee=written.fee,
        link=checks.redemption_link(written.check_id),
    )


@router.get("/checks/{check_id}", response_model=CheckDetailResponse)
async def get_check(
    check_id: int,
    request: Request,
    receiver_id: Optional[int] = Query(None, ge=1, description="Redeem a blank check to this user"),
    user_id: Optional[int] = Depends(get_optional_user_id),
    checks: CheckService = Depends(get_check_service),
):
    """
    View a check, claiming and cashing it when it is an unclaimed blank check.

    With receiver_id this is the shareable redemption link and needs no
    identity. Without it, the caller's identity decides: a non-sender viewing
    an unclaimed blank check redeems it, anyone else just views it.
    """
    request_id = get_request_id(request)

    if receiver_id is not None:
        try:
            redeemed = await checks.redeem_check(check_id, receiver_id)
            check = checks.get_check(check_id)
        except Exception as e:
            raise http_error_for(e, request_id)
        return _detail(checks, check, viewer_id=receiver_id, redeemed=redeemed)

    if user_id is None:
        raise HTTPException(status_code=401, detail={"error": "User ID not found in session"})

    try:
        check = checks.get_check(check_id)
        if checks.is_claimable_by(check, user_id):
            redeemed = await checks.redeem_check(check_id, user_id)
            return _detail(checks, checks.get_check(check_id), viewer_id=user_id, redeemed=redeemed)
        check = checks.view_check(check_id, user_id)
    except Exception as e:
        raise http_error_for(e, request_id)
    return _detail(checks, check, viewer_id=user_id)


def _detail(
    checks: CheckService,
    check: Check,
    viewer_id: int,
    redeemed: Optional[CheckRedeemed] = None,
) -> CheckDetailResponse:
    return CheckDetailResponse(
        check=CheckSchema.model_validate(check),
        is_sender=check.sender_id == viewer_id,
        link=checks.redemption_link(check.id),
        redeemed_now=redeemed is not None,
        redemption_success=redeemed.success if redeemed else None,
        redemption_error=redeemed.error if redeemed else None,
        redemption_locked=bool(redeemed and redeemed.locked),
        suggestion=LOCKOUT_SUGGESTION if redeemed and redeemed.locked else None,
    )
