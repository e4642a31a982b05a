# services/api/routers/approval.py
from __future__ import annotations

import logging
from typing import Annotated, Any, Dict, Optional

from fastapi import APIRouter, Depends

from core.approval import ApprovalService
from core.deps import get_approval_service, get_current_owner
from schemas import ApprovalConfirmBody, ApprovalRequestBody

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/approval", tags=["approval"])

Approvals = Annotated[ApprovalService, Depends(get_approval_service)]
Owner = Annotated[Dict[str, Any], Depends(get_current_owner)]


@router.post("/request/{project_id}")
async def request_approval(
    project_id: str,
    approvals: Approvals,
    owner: Owner,
    body: Optional[ApprovalRequestBody] = None,
):
    """
    Email the client an approval link and PIN. Earlier links stop working.

    Without an email transport in development the PIN and link are
    returned directly (devPin / devApprovalUrl).
    """
    result = await approvals.request_approval(project_id, owner["id"], body.email if body else None)
    response: Dict[str, Any] = {"ok": True}
    if result.dev_pin is not None:
        response["devPin"] = result.dev_pin
        response["devApprovalUrl"] = result.approval_url
    return response


@router.get("/{token}")
async def get_approval(token: str, approvals: Approvals):
    """Approval page data. Dead links answer 404 unless the project is approved."""
    return approvals.get_approval_info(token)


@router.post("/{token}/confirm")
async def confirm_approval(
    token: str,
    approvals: Approvals,
    body: Optional[ApprovalConfirmBody] = None,
):
    """Check the PIN and approve. Repeating after success is still {ok: true}."""
    return approvals.confirm_approval(token, body.pin if body else None)
