"""Session action endpoints."""

import logging
import secrets

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from ..config import get_settings
from ..controller import SessionController, get_session_controller
from ..errors import NotRegistered, ProviderUnavailable, SessionError, ValidationError
from ..models import (
    ActionResponse,
    CallRequest,
    CallTarget,
    Credentials,
    RequestAck,
    SessionStateResponse,
    StatusHistoryResponse,
)

logger = logging.getLogger(__name__)

security = HTTPBasic(auto_error=False)


def verify_auth(credentials: HTTPBasicCredentials = Depends(security)):
    """Verify basic authentication if enabled."""
    settings = get_settings()
    if not settings.auth_enabled:
        return True

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Basic"},
        )

    correct_username = secrets.compare_digest(
        credentials.username.encode("utf8"),
        settings.username.encode("utf8"),
    )
    correct_password = secrets.compare_digest(
        credentials.password.encode("utf8"),
        settings.password.encode("utf8"),
    )

    if not (correct_username and correct_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Basic"},
        )
    return True


router = APIRouter(prefix="/api/session", tags=["session"], dependencies=[Depends(verify_auth)])


def to_http_error(error: SessionError) -> HTTPException:
    """Map a rejected session action to an HTTP error."""
    if isinstance(error, ValidationError):
        code = 422
    elif isinstance(error, NotRegistered):
        code = 409
    elif isinstance(error, ProviderUnavailable):
        code = 503
    else:
        code = 400
    return HTTPException(status_code=code, detail=get_session_controller().current_status().message)


def action_response(controller: SessionController, ack: RequestAck) -> ActionResponse:
    return ActionResponse(
        accepted=ack.accepted,
        message=ack.message,
        registration_state=controller.registration_state,
        call_state=controller.call_state,
        status=controller.current_status(),
    )


@router.post("/login", response_model=ActionResponse)
async def login(credentials: Credentials):
    """
    Register with the SIP server.

    The response only says whether the request was accepted; poll
    /status for the registration outcome.
    """
    controller = get_session_controller()
    try:
        ack = await controller.login(credentials)
    except SessionError as e:
        logger.info(f"Login rejected: {e}")
        raise to_http_error(e)
    return action_response(controller, ack)


@router.post("/call", response_model=ActionResponse)
async def place_call(call: CallRequest):
    """Place an outgoing call."""
    controller = get_session_controller()
    try:
        ack = await controller.place_call(CallTarget(callee_address=call.callee_address))
    except SessionError as e:
        logger.info(f"Call rejected: {e}")
        raise to_http_error(e)
    return action_response(controller, ack)


@router.post("/hangup", response_model=ActionResponse)
async def hangup():
    """End the current call."""
    controller = get_session_controller()
    try:
        ack = await controller.hangup()
    except SessionError as e:
        logger.info(f"Hangup rejected: {e}")
        raise to_http_error(e)
    return action_response(controller, ack)


@router.get("/status", response_model=SessionStateResponse)
async def session_status():
    """Current registration state, call state and status message."""
    controller = get_session_controller()
    return SessionStateResponse(
        registration_state=controller.registration_state,
        call_state=controller.call_state,
        status=controller.current_status(),
    )


@router.get("/history", response_model=StatusHistoryResponse)
async def status_history():
    """Recent status updates, oldest first."""
    statuses = get_session_controller().status_history()
    return StatusHistoryResponse(statuses=statuses, count=len(statuses))
