"""FastAPI application for Dance Chives."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from importlib.metadata import PackageNotFoundError, version as pkg_version
from pathlib import Path
import tomllib

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from .auth import Actor, can_update_user_cities
from .config import settings
from .crud import get_user_by_token, require_user, set_city_access
from .database import SessionLocal
from .errors import (
    DanceChivesError,
    Forbidden,
    TargetNotFound,
    Unauthorized,
    ValidationError,
)
from .graph import GraphStore, get_store
from .notifications import (
    count_new_notifications,
    list_notifications,
    mark_all_notifications_as_old,
    mark_notification_as_old,
    serialize_notification,
)
from .scheduler import start_scheduler, stop_scheduler
from .storage import checkpoint_graph, init_db
from .tagging import (
    TagResult,
    mark_user_as_section_winner,
    mark_user_as_video_winner,
    remove_role_from_event,
    remove_section_winner_tag,
    remove_self_winner_tag_from_video,
    remove_tag_from_section,
    remove_tag_from_video,
    remove_video_winner_tag,
    tag_self_with_role,
    tag_users_in_section,
    tag_users_in_video,
    tag_users_with_role,
)
from .workflow import (
    cancel_request,
    create_auth_level_change_request,
    create_tagging_request,
    create_team_member_request,
    get_incoming_requests,
    get_outgoing_requests,
    get_pending_tag_requests_for_event,
    respond_to_request,
    serialize_request,
)

# Use uvicorn's error logger so messages get the level prefix in the default log
# format (needed for downstream filtering like Loki).
logger = logging.getLogger("uvicorn.error")


def _load_app_version() -> str:
    """Return the current package version, falling back to pyproject for dev runs."""
    try:
        return pkg_version("dancechives")
    except PackageNotFoundError:
        pyproject_path = Path(__file__).resolve().parent.parent / "pyproject.toml"
        if pyproject_path.exists():
            data = tomllib.loads(pyproject_path.read_text())
            project = data.get("project") or {}
            return str(project.get("version") or "dev")
    return "dev"


APP_VERSION = _load_app_version()


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    start_scheduler()
    try:
        yield
    finally:
        stop_scheduler()
        checkpoint_graph()


app = FastAPI(title="Dance Chives", version=APP_VERSION, lifespan=lifespan)


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_graph():
    """Yield the graph store and checkpoint it once the request succeeds."""
    graph = get_store()
    yield graph
    graph.checkpoint()


def _get_bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("authorization") or ""
    if not auth_header.lower().startswith("bearer "):
        return None
    token = auth_header.split(" ", 1)[1].strip()
    return token or None


def get_actor(request: Request, db: Session = Depends(get_db)) -> Actor:
    token = _get_bearer_token(request)
    if not token:
        raise Unauthorized("Missing bearer token")
    user = get_user_by_token(db, token)
    if not user:
        raise Unauthorized("Invalid bearer token")
    return Actor(user_id=user.id, auth_level=user.auth_level, verified=user.verified)


def _error_body(code: str, detail) -> dict:
    return {"error": code, "detail": detail}


@app.exception_handler(DanceChivesError)
async def dancechives_error_handler(request: Request, exc: DanceChivesError):
    if exc.status_code >= 500:
        logger.error(
            "%s while processing %s %s", exc.code, request.method, request.url.path
        )
    return JSONResponse(_error_body(exc.code, exc.message), status_code=exc.status_code)


@app.exception_handler(OperationalError)
async def operational_error_handler(request: Request, exc: OperationalError):
    raw = str(exc.orig) if getattr(exc, "orig", None) else str(exc)
    lower = raw.lower()
    if "database is locked" in lower:
        logger.error(
            "SQLite database is locked while handling %s %s",
            request.method,
            request.url.path,
        )
        detail = "The database is busy at the moment. Please wait a few seconds and try again."
        status = 503
    else:
        logger.error(
            "Operational database error on %s %s: %s",
            request.method,
            request.url.path,
            raw,
        )
        detail = "We hit a database issue. Please try again."
        status = 500
    return JSONResponse(_error_body("DatabaseError", detail), status_code=status)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        _error_body("ValidationError", jsonable_encoder(exc.errors())),
        status_code=400,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Gracefully handle unexpected errors."""
    logger.exception(
        "Unhandled error while processing %s %s", request.method, request.url.path
    )
    return JSONResponse(
        _error_body("InternalError", "Internal server error"), status_code=500
    )


# -------- request bodies --------


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class TagUsersPayload(CamelModel):
    event_id: str | None = Field(None, alias="eventId")
    video_id: str | None = Field(None, alias="videoId")
    section_id: str | None = Field(None, alias="sectionId")
    role: str | None = None
    user_ids: list[str] | None = Field(None, alias="userIds")


class TaggingRequestPayload(CamelModel):
    event_id: str = Field(..., alias="eventId")
    video_id: str | None = Field(None, alias="videoId")
    section_id: str | None = Field(None, alias="sectionId")
    role: str


class SelfTagPayload(CamelModel):
    role: str
    video_id: str | None = Field(None, alias="videoId")
    section_id: str | None = Field(None, alias="sectionId")


class AuthLevelRequestPayload(CamelModel):
    target_user_id: str = Field(..., alias="targetUserId")
    requested_level: int = Field(..., alias="requestedLevel")
    message: str


class RequestResponsePayload(BaseModel):
    message: str | None = None


class CityAccessPayload(CamelModel):
    city_id: str | None = Field(None, alias="cityId")
    all_city_access: bool | None = Field(None, alias="allCityAccess")


# -------- tag scopes --------


@dataclass(frozen=True)
class EventTagScope:
    event_id: str
    role: str
    user_ids: list[str]


@dataclass(frozen=True)
class SectionTagScope:
    event_id: str
    section_id: str
    role: str
    user_ids: list[str]


@dataclass(frozen=True)
class VideoTagScope:
    event_id: str
    video_id: str
    role: str
    user_ids: list[str]


TagScope = EventTagScope | SectionTagScope | VideoTagScope


def parse_tag_scope(payload: TagUsersPayload) -> TagScope:
    event_id = (payload.event_id or "").strip()
    role = (payload.role or "").strip()
    user_ids = [uid for uid in (payload.user_ids or []) if uid]
    if not event_id or not role or not user_ids:
        raise ValidationError("eventId, role, and userIds are required")
    # videoId wins when both ids are sent
    if payload.video_id:
        return VideoTagScope(event_id, payload.video_id, role, user_ids)
    if payload.section_id:
        return SectionTagScope(event_id, payload.section_id, role, user_ids)
    return EventTagScope(event_id, role, user_ids)


def dispatch_tag_scope(
    db: Session, graph: GraphStore, actor: Actor, scope: TagScope
) -> TagResult:
    if isinstance(scope, VideoTagScope):
        return tag_users_in_video(
            db, graph, actor, scope.event_id, scope.video_id, scope.user_ids, scope.role
        )
    if isinstance(scope, SectionTagScope):
        return tag_users_in_section(
            db,
            graph,
            actor,
            scope.event_id,
            scope.section_id,
            scope.user_ids,
            scope.role,
        )
    return tag_users_with_role(
        db, graph, actor, scope.event_id, scope.user_ids, scope.role
    )


# -------- JSON API (v1) --------


@app.get("/api/v1/health")
def api_health():
    return {"status": "ok", "version": APP_VERSION}


@app.post("/tag-users")
@app.post("/api/v1/tag-users")
def api_tag_users(
    payload: TagUsersPayload,
    db: Session = Depends(get_db),
    graph: GraphStore = Depends(get_graph),
    actor: Actor = Depends(get_actor),
):
    scope = parse_tag_scope(payload)
    result = dispatch_tag_scope(db, graph, actor, scope)
    return JSONResponse(result.as_dict(), status_code=200 if result.success else 400)


@app.post("/api/v1/events/{event_id}/self-tags")
def api_tag_self(
    event_id: str,
    payload: SelfTagPayload,
    db: Session = Depends(get_db),
    graph: GraphStore = Depends(get_graph),
    actor: Actor = Depends(get_actor),
):
    result = tag_self_with_role(
        db,
        graph,
        actor,
        event_id,
        payload.role,
        video_id=payload.video_id,
        section_id=payload.section_id,
    )
    body = result.as_dict()
    body["directTag"] = bool(result.succeeded)
    return body


@app.get("/api/v1/notifications")
def api_list_notifications(
    limit: int = Query(settings.notification_page_size, ge=1, le=200),
    is_old: bool | None = Query(None, alias="isOld"),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    notifications = list_notifications(db, actor.user_id, limit=limit, is_old=is_old)
    return {"notifications": [serialize_notification(n) for n in notifications]}


@app.get("/api/v1/notifications/count")
def api_count_notifications(
    db: Session = Depends(get_db), actor: Actor = Depends(get_actor)
):
    return {"count": count_new_notifications(db, actor.user_id)}


@app.post("/api/v1/notifications/old")
def api_mark_all_notifications_old(
    db: Session = Depends(get_db), actor: Actor = Depends(get_actor)
):
    return {"updated": mark_all_notifications_as_old(db, actor.user_id)}


@app.post("/api/v1/notifications/{notification_id}/old")
def api_mark_notification_old(
    notification_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    notification = mark_notification_as_old(db, actor.user_id, notification_id)
    return {"notification": serialize_notification(notification)}


@app.post("/api/v1/tagging-requests", status_code=201)
def api_create_tagging_request(
    payload: TaggingRequestPayload,
    response: Response,
    db: Session = Depends(get_db),
    graph: GraphStore = Depends(get_graph),
    actor: Actor = Depends(get_actor),
):
    outcome = create_tagging_request(
        db,
        graph,
        actor,
        payload.event_id,
        role=payload.role,
        video_id=payload.video_id,
        section_id=payload.section_id,
    )
    if outcome.is_existing:
        response.status_code = 200
    return {
        "request": serialize_request(outcome.request),
        "isExisting": outcome.is_existing,
    }


@app.get("/api/v1/tagging-requests/pending")
def api_pending_tagging_requests(
    event_id: str = Query(..., alias="eventId"),
    roles: list[str] | None = Query(None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    pending = get_pending_tag_requests_for_event(db, actor, event_id, roles)
    return {
        "pending": {role: serialize_request(req) for role, req in pending.items()}
    }


@app.post("/api/v1/events/{event_id}/team-member-requests", status_code=201)
def api_create_team_member_request(
    event_id: str,
    db: Session = Depends(get_db),
    graph: GraphStore = Depends(get_graph),
    actor: Actor = Depends(get_actor),
):
    request = create_team_member_request(db, graph, actor, event_id)
    return {"request": serialize_request(request)}


@app.post("/api/v1/auth-level-requests", status_code=201)
def api_create_auth_level_request(
    payload: AuthLevelRequestPayload,
    db: Session = Depends(get_db),
    graph: GraphStore = Depends(get_graph),
    actor: Actor = Depends(get_actor),
):
    request = create_auth_level_change_request(
        db,
        graph,
        actor,
        payload.target_user_id,
        payload.requested_level,
        payload.message,
    )
    return {"request": serialize_request(request)}


@app.post("/api/v1/requests/{request_type}/{request_id}/approve")
def api_approve_request(
    request_type: str,
    request_id: str,
    payload: RequestResponsePayload | None = None,
    db: Session = Depends(get_db),
    graph: GraphStore = Depends(get_graph),
    actor: Actor = Depends(get_actor),
):
    request = respond_to_request(
        db,
        graph,
        actor,
        request_type,
        request_id,
        approve=True,
        message=payload.message if payload else None,
    )
    return {"request": serialize_request(request)}


@app.post("/api/v1/requests/{request_type}/{request_id}/deny")
def api_deny_request(
    request_type: str,
    request_id: str,
    payload: RequestResponsePayload | None = None,
    db: Session = Depends(get_db),
    graph: GraphStore = Depends(get_graph),
    actor: Actor = Depends(get_actor),
):
    request = respond_to_request(
        db,
        graph,
        actor,
        request_type,
        request_id,
        approve=False,
        message=payload.message if payload else None,
    )
    return {"request": serialize_request(request)}


@app.post("/api/v1/requests/{request_type}/{request_id}/cancel")
def api_cancel_request(
    request_type: str,
    request_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    request = cancel_request(db, actor, request_type, request_id)
    return {"request": serialize_request(request)}


@app.get("/api/v1/requests/incoming")
def api_incoming_requests(
    db: Session = Depends(get_db),
    graph: GraphStore = Depends(get_graph),
    actor: Actor = Depends(get_actor),
):
    incoming = get_incoming_requests(db, graph, actor)
    return {
        kind: [serialize_request(req) for req in requests]
        for kind, requests in incoming.items()
    }


@app.get("/api/v1/requests/outgoing")
def api_outgoing_requests(
    db: Session = Depends(get_db), actor: Actor = Depends(get_actor)
):
    outgoing = get_outgoing_requests(db, actor)
    return {
        kind: [serialize_request(req) for req in requests]
        for kind, requests in outgoing.items()
    }


@app.delete("/api/v1/events/{event_id}/videos/{video_id}/winner", status_code=204)
def api_remove_self_winner_tag(
    event_id: str,
    video_id: str,
    user_id: str | None = Query(None, alias="userId"),
    db: Session = Depends(get_db),
    graph: GraphStore = Depends(get_graph),
    actor: Actor = Depends(get_actor),
):
    remove_self_winner_tag_from_video(
        db, graph, actor, event_id, video_id, user_id or actor.user_id
    )
    return Response(status_code=204)


@app.delete("/api/v1/events/{event_id}/roles/{role}", status_code=204)
def api_remove_event_role(
    event_id: str,
    role: str,
    user_id: str | None = Query(None, alias="userId"),
    db: Session = Depends(get_db),
    graph: GraphStore = Depends(get_graph),
    actor: Actor = Depends(get_actor),
):
    remove_role_from_event(db, graph, actor, event_id, user_id or actor.user_id, role)
    return Response(status_code=204)


@app.delete("/api/v1/events/{event_id}/videos/{video_id}/tags", status_code=204)
def api_remove_video_tags(
    event_id: str,
    video_id: str,
    user_id: str | None = Query(None, alias="userId"),
    db: Session = Depends(get_db),
    graph: GraphStore = Depends(get_graph),
    actor: Actor = Depends(get_actor),
):
    remove_tag_from_video(db, graph, actor, event_id, video_id, user_id or actor.user_id)
    return Response(status_code=204)


@app.delete(
    "/api/v1/events/{event_id}/sections/{section_id}/roles/{role}", status_code=204
)
def api_remove_section_role(
    event_id: str,
    section_id: str,
    role: str,
    user_id: str | None = Query(None, alias="userId"),
    db: Session = Depends(get_db),
    graph: GraphStore = Depends(get_graph),
    actor: Actor = Depends(get_actor),
):
    remove_tag_from_section(
        db, graph, actor, event_id, section_id, user_id or actor.user_id, role
    )
    return Response(status_code=204)


@app.put("/api/v1/events/{event_id}/videos/{video_id}/winners/{user_id}")
def api_mark_video_winner(
    event_id: str,
    video_id: str,
    user_id: str,
    db: Session = Depends(get_db),
    graph: GraphStore = Depends(get_graph),
    actor: Actor = Depends(get_actor),
):
    applied = mark_user_as_video_winner(db, graph, actor, event_id, video_id, user_id)
    return {"userId": user_id, "applied": applied}


@app.delete(
    "/api/v1/events/{event_id}/videos/{video_id}/winners/{user_id}", status_code=204
)
def api_remove_video_winner(
    event_id: str,
    video_id: str,
    user_id: str,
    db: Session = Depends(get_db),
    graph: GraphStore = Depends(get_graph),
    actor: Actor = Depends(get_actor),
):
    remove_video_winner_tag(db, graph, actor, event_id, video_id, user_id)
    return Response(status_code=204)


@app.put("/api/v1/events/{event_id}/sections/{section_id}/winners/{user_id}")
def api_mark_section_winner(
    event_id: str,
    section_id: str,
    user_id: str,
    db: Session = Depends(get_db),
    graph: GraphStore = Depends(get_graph),
    actor: Actor = Depends(get_actor),
):
    added = mark_user_as_section_winner(
        db, graph, actor, event_id, section_id, user_id
    )
    return {"userId": user_id, "added": added}


@app.delete("/api/v1/events/{event_id}/sections/{section_id}/winners")
def api_remove_section_winners(
    event_id: str,
    section_id: str,
    user_id: str | None = Query(None, alias="userId"),
    db: Session = Depends(get_db),
    graph: GraphStore = Depends(get_graph),
    actor: Actor = Depends(get_actor),
):
    removed = remove_section_winner_tag(
        db, graph, actor, event_id, section_id, user_id
    )
    return {"removed": removed}


@app.put("/api/v1/users/{user_id}/city")
def api_update_user_city(
    user_id: str,
    payload: CityAccessPayload,
    db: Session = Depends(get_db),
    graph: GraphStore = Depends(get_graph),
    actor: Actor = Depends(get_actor),
):
    if not can_update_user_cities(actor.auth_level):
        raise Forbidden("Insufficient permissions. Admin or Super Admin required.")
    require_user(db, user_id)
    if payload.city_id and graph.get_city_name(payload.city_id) is None:
        raise TargetNotFound("City not found")
    user = set_city_access(
        db,
        user_id,
        city_id=payload.city_id,
        all_cities=payload.all_city_access,
        replace_city="city_id" in payload.model_fields_set,
    )
    logger.info("City access for %s updated by %s", user_id, actor.user_id)
    return {
        "userId": user.id,
        "cityId": user.city.city_id if user.city else None,
        "allCityAccess": user.all_city_access,
    }
