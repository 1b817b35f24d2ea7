"""Hook used by the interest collaborator after it stores a submission."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request, status

from ..events import on_interest_submitted
from ..messaging import schemas
from ..messaging.directory import Participant
from ..security.auth import get_current_participant

router = APIRouter(prefix="/api/interests", tags=["interests"])


@router.post("/{interest_id}/submitted", status_code=status.HTTP_202_ACCEPTED)
async def interest_submitted(
    interest_id: str,
    payload: schemas.InterestSubmittedRequest,
    request: Request,
    participant: Annotated[Participant, Depends(get_current_participant)],
) -> dict[str, object]:
    """Queue the admin notification; the outcome never affects this response."""
    scheduled = on_interest_submitted(
        request.app.state.event_bus,
        interest_id,
        participant.id,
        interest_type=payload.interest_type,
        transaction_type=payload.transaction_type,
    )
    return {"accepted": True, "handlers": scheduled}
