"""
FastAPI application for the Slack-facing referral endpoints.
"""

import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import parse_qs

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from referral_intake.config import Settings, get_settings
from referral_intake.errors import AuthError, DownstreamError
from referral_intake.logging_config import configure_logging
from referral_intake.models import ButtonVariant
from referral_intake.services import messages
from referral_intake.services.signature import verify, verify_bearer
from referral_intake.services.workflow_service import WorkflowService, get_workflow_service

logger = logging.getLogger(__name__)

# A failed submission keeps the modal open with the error on this block
SUBMISSION_ERROR_BLOCKS = {
    messages.REFERRAL_CALLBACK_ID: messages.CLIENT_NAME_BLOCK,
    messages.COMPLETION_CALLBACK_ID: messages.COMPLETION_NOTES_BLOCK,
}


# ============================================================================
# Pydantic Schemas
# ============================================================================
class PostButtonResponse(BaseModel):
    """Schema for post-button response."""

    ok: bool
    message: str
    ts: Optional[str] = None
    channel: Optional[str] = None


class HealthResponse(BaseModel):
    """Schema for health check response."""

    status: str
    timestamp: str
    environment: dict[str, bool]
    ready: bool
    message: str


# ============================================================================
# Dependencies
# ============================================================================
def get_app_settings(request: Request) -> Settings:
    """Dependency for the settings the app was created with."""
    return request.app.state.settings


def get_workflow(request: Request) -> WorkflowService:
    """Dependency for the workflow service, built on first use if the lifespan did not run."""
    workflow = getattr(request.app.state, "workflow", None)
    if workflow is None:
        workflow = get_workflow_service(request.app.state.settings)
        request.app.state.workflow = workflow
    return workflow


async def verified_slack_body(
    request: Request,
    settings: Settings = Depends(get_app_settings),
) -> bytes:
    """Dependency returning the raw body once the Slack signature checks out."""
    body = await request.body()
    if not verify(
        settings.slack_signing_secret or "",
        body,
        request.headers.get("X-Slack-Request-Timestamp"),
        request.headers.get("X-Slack-Signature"),
    ):
        logger.warning(f"Rejected unsigned or stale request to {request.url.path}")
        raise AuthError("Invalid signature")
    return body


router = APIRouter()


# ============================================================================
# API Routes - Slack
# ============================================================================
@router.post("/api/slack/events")
def slack_events(
    body: bytes = Depends(verified_slack_body),
    workflow: WorkflowService = Depends(get_workflow),
):
    """Receive Events API callbacks (URL verification and reactions)."""
    try:
        payload = json.loads(body)
    except ValueError:
        raise HTTPException(400, "Malformed event payload")

    if payload.get("type") == "url_verification":
        return {"challenge": payload.get("challenge")}

    if payload.get("type") == "event_callback":
        event = payload.get("event") or {}
        if event.get("type") == "reaction_added":
            workflow.handle_reaction(event)
        else:
            logger.debug(f"Unhandled event type: {event.get('type')}")

    return {"ok": True}


@router.post("/api/slack/interactions")
def slack_interactions(
    body: bytes = Depends(verified_slack_body),
    workflow: WorkflowService = Depends(get_workflow),
):
    """Receive button clicks and modal submissions."""
    form = parse_qs(body.decode("utf-8"))
    try:
        payload = json.loads(form.get("payload", ["{}"])[0])
    except ValueError:
        raise HTTPException(400, "Malformed interaction payload")

    interaction_type = payload.get("type")
    if interaction_type == "block_actions":
        return _handle_block_actions(payload, workflow)
    if interaction_type == "view_submission":
        return _handle_view_submission(payload, workflow)

    raise HTTPException(400, f"Unknown interaction type: {interaction_type}")


def _handle_block_actions(payload: dict, workflow: WorkflowService) -> dict:
    actions = payload.get("actions") or [{}]
    action = actions[0]
    trigger_id = payload.get("trigger_id")

    if action.get("action_id") == messages.OPEN_REFERRAL_ACTION:
        workflow.open_referral_form(trigger_id)
    elif action.get("action_id") == messages.OPEN_COMPLETION_ACTION:
        workflow.open_completion_form(trigger_id, action.get("value") or None)

    return {}


def _handle_view_submission(payload: dict, workflow: WorkflowService) -> dict:
    view = payload.get("view") or {}
    callback_id = view.get("callback_id")
    user_id = (payload.get("user") or {}).get("id", "")

    try:
        if callback_id == messages.REFERRAL_CALLBACK_ID:
            values = (view.get("state") or {}).get("values") or {}
            return workflow.submit_referral(user_id, values)
        if callback_id == messages.COMPLETION_CALLBACK_ID:
            return workflow.submit_completion(user_id, view)
    except Exception:
        logger.exception(f"Unexpected failure handling {callback_id}")
        return {
            "response_action": "errors",
            "errors": {
                SUBMISSION_ERROR_BLOCKS[callback_id]: "Something went wrong. Please try again."
            },
        }

    return {}


@router.post("/api/slack/post-button", response_model=PostButtonResponse)
def post_button(
    channel: Optional[str] = Query(None),
    variant: ButtonVariant = Query(ButtonVariant.REFERRAL),
    referral_id: Optional[str] = Query(None),
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_app_settings),
    workflow: WorkflowService = Depends(get_workflow),
):
    """Post a start button to a channel. Authenticated with the signing secret as a bearer token."""
    if not verify_bearer(settings.slack_signing_secret or "", authorization):
        raise AuthError("Unauthorized")

    if not channel:
        if variant == ButtonVariant.REFERRAL:
            channel = settings.channel_accountant_referral
        else:
            channel = settings.channel_services_completed
    if not channel:
        raise HTTPException(400, "No channel specified")

    try:
        result = workflow.post_start_button(channel, variant, referral_id)
    except DownstreamError as e:
        logger.error(f"Error posting button: {e}")
        return JSONResponse(
            {"error": "Failed to post button", "details": str(e)}, status_code=500
        )

    return PostButtonResponse(
        ok=True,
        message="Button posted successfully",
        ts=result.get("ts"),
        channel=result.get("channel"),
    )


# ============================================================================
# API Routes - Health
# ============================================================================
@router.get("/api/health", response_model=HealthResponse)
def health(settings: Settings = Depends(get_app_settings)):
    """Report which integrations are configured."""
    checks = settings.configuration_checks()
    ready = all(checks.values())
    body = HealthResponse(
        status="ok",
        timestamp=datetime.now(timezone.utc).isoformat(),
        environment=checks,
        ready=ready,
        message="All systems operational"
        if ready
        else "Missing configuration - check environment variables",
    )
    return JSONResponse(body.model_dump(), status_code=200 if ready else 503)


# ============================================================================
# Application Setup
# ============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings = app.state.settings
    configure_logging(settings.log_level)
    if getattr(app.state, "workflow", None) is None:
        app.state.workflow = get_workflow_service(settings)
    logger.info(f"{settings.app_name} started ({settings.record_backend} record store)")
    yield


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    return JSONResponse({"error": str(exc)}, status_code=401)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.url.path}")
    return JSONResponse({"error": "Internal server error"}, status_code=500)


def create_app(
    settings: Optional[Settings] = None,
    workflow: Optional[WorkflowService] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Slack referral intake, scheduling and invoicing",
        version="0.1.0",
        debug=settings.debug,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.workflow = workflow

    app.add_exception_handler(AuthError, auth_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
    app.include_router(router)

    return app


app = create_app()
