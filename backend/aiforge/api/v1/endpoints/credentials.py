import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from aiforge.core.auth import get_current_user_id
from aiforge.schemas.credentials import CredentialStatusResponse, CredentialUpdateRequest
from aiforge.services.generation.credentials import CredentialGate
from aiforge.services.generation.history import SqlCredentialStore

logger = logging.getLogger(__name__)

router = APIRouter()


def _status(gate: CredentialGate) -> CredentialStatusResponse:
    return CredentialStatusResponse(
        state=gate.state,
        ready=gate.is_ready,
        initializing=gate.is_initializing,
        error=gate.error or None,
    )


@router.get("/status", response_model=CredentialStatusResponse)
async def credential_status(request: Request) -> CredentialStatusResponse:
    """Report whether the AI service is configured."""
    return _status(request.app.state.credential_gate)


@router.post("", response_model=CredentialStatusResponse)
async def set_credential(
    body: CredentialUpdateRequest,
    request: Request,
    user_id: str = Depends(get_current_user_id),
) -> CredentialStatusResponse:
    """Validate a user-supplied API key, store it, and make it the active credential."""
    gate: CredentialGate = request.app.state.credential_gate
    store = SqlCredentialStore(request.app.state.session_factory, user_id)

    if not await gate.initialize(api_key=body.api_key, store=store):
        logger.warning("Credential update by user %s rejected: %s", user_id, gate.error)
        raise HTTPException(status_code=400, detail=gate.error)

    return _status(gate)
