import asyncio
import datetime
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, Depends, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from sqlalchemy import text
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

import calendar_settings
import calendar_sync
import google_oauth
import tasks
from config import GoogleConfig, load_app_config, load_google_config
from db import SessionLocal, get_db
from errors import IntegrationError, NotFoundLocal, ValidationError
from google_calendar import GoogleCalendarClient
from history import list_history
from pulse import SingleFlightPulse
from schemas import (
    ApiModel,
    CalendarSetting,
    CalendarWithSetting,
    SyncReport,
    SyncResult,
    Task,
    TaskCreate,
    TaskHistoryEntry,
    TaskResponse,
    TaskUpdate,
)


# --- KONFIGURACJA ---
APP_CONFIG = load_app_config()

# --- LOGGING ---
logging.basicConfig(level=APP_CONFIG.log_level)
logger = logging.getLogger(__name__)


def _new_google_client() -> GoogleCalendarClient:
    return GoogleCalendarClient(load_google_config())


async def _auto_sync_job() -> None:
    synced = await asyncio.to_thread(
        calendar_sync.auto_sync_all, SessionLocal, _new_google_client, APP_CONFIG.default_timezone
    )
    logger.info(f"Auto-sync pulse finished, {synced} users synced")


# --- LIFECYCLE ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("🚀 Task sync backend starting...")
    # Schema: run `alembic upgrade head` from backend/ before starting.
    pulse = None
    if APP_CONFIG.auto_sync_interval > 0:
        pulse = SingleFlightPulse(_auto_sync_job, APP_CONFIG.auto_sync_interval, name="auto-sync")
        pulse.start()
    app.state.pulse = pulse
    yield
    # Shutdown
    if pulse is not None:
        await pulse.stop()
    logger.info("🛑 Task sync backend shutting down...")


app = FastAPI(
    title="Task Calendar Sync API",
    version="1.0.0",
    description="Tasks with recurrence, mirrored into Google Calendar",
    lifespan=lifespan,
)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=APP_CONFIG.allowed_origins,
    allow_credentials="*" not in APP_CONFIG.allowed_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- ERRORS ---
def error_response(status_code: int, message: str, headers: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message}, headers=headers)


@app.exception_handler(IntegrationError)
async def integration_error_handler(request: Request, exc: IntegrationError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return error_response(exc.status_code, str(exc))


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
    else:
        message = "Invalid request"
    return error_response(status.HTTP_400_BAD_REQUEST, message)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"{request.method} {request.url.path} failed unexpectedly", exc_info=exc)
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


# --- DEPENDENCY ---
def get_google_config() -> GoogleConfig:
    return load_google_config()


def get_google_client(config: GoogleConfig = Depends(get_google_config)):
    client = GoogleCalendarClient(config)
    try:
        yield client
    finally:
        client.close()


def require_connected_credential(db: Session, user_id: Optional[str]):
    if not user_id:
        raise ValidationError("User ID is required")
    credential = google_oauth.get_credential(db, user_id)
    if credential is None or not credential.connected:
        raise NotFoundLocal("Google Calendar integration not found or not connected")
    return credential


# --- MODELE PYDANTIC ---
class UserRequest(ApiModel):
    user_id: Optional[str] = None


class OAuthStartRequest(UserRequest):
    redirect_url: Optional[str] = None


class OAuthCallbackRequest(ApiModel):
    code: Optional[str] = None
    state: Optional[str] = None
    callback_url: Optional[str] = None


class CalendarSelectRequest(UserRequest):
    calendar_id: Optional[str] = None


class CalendarVisibilityRequest(UserRequest):
    calendar_id: Optional[str] = None
    enabled: bool = True


class SyncRequest(UserRequest):
    task_id: Optional[str] = None
    task_ids: Optional[List[str]] = None
    timezone: Optional[str] = None


class DeleteEventRequest(UserRequest):
    calendar_id: Optional[str] = None
    event_id: Optional[str] = None


class AuthUrlResponse(ApiModel):
    auth_url: str


class GoogleStatusResponse(ApiModel):
    connected: bool
    calendar_id: Optional[str] = None
    provider_email: Optional[str] = None
    token_expires_at: Optional[datetime.datetime] = None


class CalendarListResponse(ApiModel):
    calendars: List[CalendarWithSetting]


class SuccessResponse(ApiModel):
    success: bool = True
    message: Optional[str] = None


class DisconnectResponse(SuccessResponse):
    revoked: bool = False


class DeleteTaskResponse(SuccessResponse):
    deleted: bool
    sync: Optional[SyncResult] = None


# --- ENDPOINTY ---
@app.get("/", tags=["System"])
async def root():
    """Health check endpoint"""
    return {
        "system": "Task Calendar Sync",
        "status": "Online",
        "version": app.version,
    }


@app.get("/health", tags=["System"])
async def health_check(db: Session = Depends(get_db)):
    """Health check including a database round trip"""
    try:
        db.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as e:
        logger.error(f"Database health check failed: {str(e)}")
        db_status = "unhealthy"

    return {
        "status": "ok" if db_status == "healthy" else "degraded",
        "database": db_status,
        "timestamp": datetime.datetime.utcnow().isoformat(),
    }


# --- GOOGLE OAUTH ---
@app.post("/api/google/oauth/start", response_model=AuthUrlResponse, tags=["Google"])
async def google_oauth_start(payload: OAuthStartRequest, config: GoogleConfig = Depends(get_google_config)):
    url = google_oauth.build_auth_url(config, payload.user_id, payload.redirect_url)
    logger.info(f"Generated Google auth URL for user {payload.user_id}")
    return AuthUrlResponse(auth_url=url)


@app.post("/api/google/oauth/callback", response_model=SuccessResponse, tags=["Google"])
async def google_oauth_exchange(
    payload: OAuthCallbackRequest,
    db: Session = Depends(get_db),
    client: GoogleCalendarClient = Depends(get_google_client),
):
    google_oauth.complete_oauth(db, client, payload.code, payload.state, payload.callback_url)
    return SuccessResponse(message="Google Calendar connected")


@app.get("/api/google/oauth/callback", tags=["Google"])
async def google_oauth_redirect(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    db: Session = Depends(get_db),
    client: GoogleCalendarClient = Depends(get_google_client),
):
    frontend_url = APP_CONFIG.frontend_url
    try:
        if error:
            raise ValidationError(f"Google authorization was not granted: {error}")
        google_oauth.complete_oauth(db, client, code, state)
    except IntegrationError as exc:
        logger.warning(f"Google OAuth callback failed: {exc}")
        if frontend_url:
            return RedirectResponse(url=f"{frontend_url}?google=error", status_code=302)
        raise

    if frontend_url:
        return RedirectResponse(url=f"{frontend_url}?google=connected", status_code=302)
    return HTMLResponse(
        content=(
            "<!doctype html><meta charset='utf-8'/>"
            "<title>Task Calendar Sync</title>"
            "<p>Google Calendar connected. You can return to the app.</p>"
        ),
        media_type="text/html; charset=utf-8",
    )


@app.get("/api/google/status", response_model=GoogleStatusResponse, tags=["Google"])
async def google_status(user_id: Optional[str] = Query(None, alias="userId"), db: Session = Depends(get_db)):
    if not user_id:
        raise ValidationError("User ID is required")
    record = google_oauth.get_credential(db, user_id)
    if record is None or not record.connected:
        return GoogleStatusResponse(connected=False)
    return GoogleStatusResponse(
        connected=True,
        calendar_id=record.calendar_id,
        provider_email=record.provider_email,
        token_expires_at=record.token_expires_at,
    )


@app.post("/api/google/disconnect", response_model=DisconnectResponse, tags=["Google"])
async def google_disconnect(
    payload: UserRequest,
    db: Session = Depends(get_db),
    client: GoogleCalendarClient = Depends(get_google_client),
):
    revoked = google_oauth.disconnect(db, client, payload.user_id)
    return DisconnectResponse(revoked=revoked, message="Google Calendar disconnected")


# --- GOOGLE CALENDARS ---
@app.post("/api/google/calendars", response_model=CalendarListResponse, tags=["Google"])
async def google_calendars(
    payload: UserRequest,
    db: Session = Depends(get_db),
    client: GoogleCalendarClient = Depends(get_google_client),
):
    credential = require_connected_credential(db, payload.user_id)
    token = google_oauth.ensure_valid_token(db, credential, client).access_token
    calendars = calendar_settings.list_calendars_with_settings(db, client, payload.user_id, token)
    return CalendarListResponse(calendars=calendars)


@app.post("/api/google/calendar/select", response_model=GoogleStatusResponse, tags=["Google"])
async def google_calendar_select(
    payload: CalendarSelectRequest,
    db: Session = Depends(get_db),
    client: GoogleCalendarClient = Depends(get_google_client),
):
    credential = require_connected_credential(db, payload.user_id)
    token = google_oauth.ensure_valid_token(db, credential, client).access_token
    record = calendar_settings.select_calendar(db, client, credential, token, payload.calendar_id)
    return GoogleStatusResponse(
        connected=True,
        calendar_id=record.calendar_id,
        provider_email=record.provider_email,
        token_expires_at=record.token_expires_at,
    )


@app.get("/api/google/calendar-settings", response_model=List[CalendarSetting], tags=["Google"])
async def google_calendar_settings(
    user_id: Optional[str] = Query(None, alias="userId"), db: Session = Depends(get_db)
):
    if not user_id:
        raise ValidationError("User ID is required")
    return calendar_settings.list_settings(db, user_id)


@app.post("/api/google/calendar-settings/visibility", response_model=CalendarSetting, tags=["Google"])
async def google_calendar_visibility(payload: CalendarVisibilityRequest, db: Session = Depends(get_db)):
    return calendar_settings.set_calendar_visibility(db, payload.user_id, payload.calendar_id, payload.enabled)


# --- GOOGLE SYNC ---
@app.post("/api/google/sync", response_model=SyncReport, tags=["Google"])
async def google_sync(
    payload: SyncRequest,
    db: Session = Depends(get_db),
    client: GoogleCalendarClient = Depends(get_google_client),
):
    timezone = payload.timezone or APP_CONFIG.default_timezone
    if payload.task_id:
        result = calendar_sync.export_task(db, client, payload.user_id, payload.task_id, timezone)
        return SyncReport(success=result.action != "failed", message=result.message or result.action, results=[result])
    return calendar_sync.export_tasks(db, client, payload.user_id, payload.task_ids, timezone)


@app.post("/api/google/events/delete", response_model=SyncResult, tags=["Google"])
async def google_delete_event(
    payload: DeleteEventRequest,
    db: Session = Depends(get_db),
    client: GoogleCalendarClient = Depends(get_google_client),
):
    return calendar_sync.delete_remote_event(db, client, payload.user_id, payload.calendar_id, payload.event_id)


# --- TASKS ---
@app.get("/api/tasks", response_model=List[Task], tags=["Tasks"])
async def get_tasks(
    user_id: Optional[str] = Query(None, alias="userId"),
    include_completed: bool = Query(True, alias="includeCompleted"),
    db: Session = Depends(get_db),
):
    return [Task.model_validate(task) for task in tasks.list_tasks(db, user_id, include_completed)]


@app.post("/api/tasks", response_model=TaskResponse, status_code=status.HTTP_201_CREATED, tags=["Tasks"])
async def create_task(
    payload: TaskCreate,
    db: Session = Depends(get_db),
    client: GoogleCalendarClient = Depends(get_google_client),
):
    return tasks.create_task(db, client, payload, APP_CONFIG.default_timezone)


@app.post("/api/tasks/samples", response_model=List[Task], status_code=status.HTTP_201_CREATED, tags=["Tasks"])
async def create_sample_tasks(payload: UserRequest, db: Session = Depends(get_db)):
    return [Task.model_validate(task) for task in tasks.seed_sample_tasks(db, payload.user_id)]


@app.get("/api/tasks/{task_id}", response_model=Task, tags=["Tasks"])
async def get_task(task_id: str, user_id: Optional[str] = Query(None, alias="userId"), db: Session = Depends(get_db)):
    return Task.model_validate(tasks.get_task(db, user_id, task_id))


@app.patch("/api/tasks/{task_id}", response_model=TaskResponse, tags=["Tasks"])
async def update_task(
    task_id: str,
    payload: TaskUpdate,
    db: Session = Depends(get_db),
    client: GoogleCalendarClient = Depends(get_google_client),
):
    return tasks.update_task(db, client, task_id, payload, APP_CONFIG.default_timezone)


@app.post("/api/tasks/{task_id}/complete", response_model=TaskResponse, tags=["Tasks"])
async def complete_task(
    task_id: str,
    payload: UserRequest,
    db: Session = Depends(get_db),
    client: GoogleCalendarClient = Depends(get_google_client),
):
    return tasks.complete_task(db, client, payload.user_id, task_id, APP_CONFIG.default_timezone)


@app.delete("/api/tasks/{task_id}", response_model=DeleteTaskResponse, tags=["Tasks"])
async def delete_task(
    task_id: str,
    user_id: Optional[str] = Query(None, alias="userId"),
    db: Session = Depends(get_db),
    client: GoogleCalendarClient = Depends(get_google_client),
):
    try:
        sync = tasks.delete_task(db, client, user_id, task_id)
    except NotFoundLocal:
        # deleting twice is not an error
        return DeleteTaskResponse(deleted=False, message="Task already deleted")
    return DeleteTaskResponse(deleted=True, sync=sync, message="Task deleted successfully")


@app.get("/api/tasks/{task_id}/history", response_model=List[TaskHistoryEntry], tags=["Tasks"])
async def get_task_history(
    task_id: str,
    user_id: Optional[str] = Query(None, alias="userId"),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    if not user_id:
        raise ValidationError("User ID is required")
    return [TaskHistoryEntry.model_validate(row) for row in list_history(db, user_id, task_id, limit)]


# --- URUCHOMIENIE ---
if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
