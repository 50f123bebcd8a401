import logging
from datetime import datetime, timezone
from typing import List, Optional, Dict, Any

from fastapi import FastAPI, Body, Depends, Header, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from bson import ObjectId
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.status import WS_1008_POLICY_VIOLATION

from config import settings
from database import MongoStore, get_database, oid
from errors import AppError, Unauthorized, NotFound
from logging_setup import setup_logging
from permissions import MANAGER
from relationships import reconcile_indexes
from task_engine import TaskEngine, lookup_many

setup_logging(settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Task Tracker API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

HIDDEN_USER_FIELDS = ("password", "confirm_token")

# -----------------------------
# Helpers
# -----------------------------

def serialize(value: Any) -> Any:
    if isinstance(value, list):
        return [serialize(v) for v in value]
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()
    if not isinstance(value, dict):
        return value
    d = {**value}
    if "_id" in d:
        d["id"] = d.pop("_id")
    return {k: serialize(v) for k, v in d.items()}


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in user.items() if k not in HIDDEN_USER_FIELDS}


def send_response(data: Any, message: str) -> Dict[str, Any]:
    return {"success": True, "data": serialize(data), "error": None, "message": message}


def error_response(status_code: int, title: str, context: str, details: Any = None) -> JSONResponse:
    error: Dict[str, Any] = {"message": title}
    if details is not None:
        error["details"] = details
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "data": None, "error": error, "message": context},
    )


def require_self_or_manager(user_id: str, user: Dict[str, Any], context: str) -> None:
    if user["id"] != user_id and user.get("role") != MANAGER:
        raise Unauthorized("Not allowed to access another user's records", context)


# -----------------------------
# Error handlers
# -----------------------------
@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    logger.info("%s %s -> %s %s: %s", request.method, request.url.path, exc.status_code, exc.context, exc.title)
    return error_response(exc.status_code, exc.title, exc.context)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return error_response(400, "Bad request", "Validation Error", jsonable_encoder(exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, str(exc.detail), "HTTP Error")


# -----------------------------
# Dependencies
# -----------------------------
def get_store() -> MongoStore:
    database = get_database()
    if database is None:
        raise AppError("Database not available", "Database Error", status_code=503)
    return MongoStore(database)


def get_engine(store=Depends(get_store)) -> TaskEngine:
    return TaskEngine(store)


def resolve_session_user(store, token: Optional[str]) -> Dict[str, Any]:
    context = "Authentication Error"
    if not token:
        raise Unauthorized("Missing token", context)
    session = store.find_one("session", {"token": token})
    if not session:
        raise Unauthorized("Invalid token", context)
    expires_at = session.get("expires_at")
    if expires_at:
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        if expires_at < datetime.now(timezone.utc):
            raise Unauthorized("Session expired", context)
    user = store.find_by_id("user", session["user_id"])
    if not user or user.get("is_deleted"):
        raise Unauthorized("User not found", context)
    return serialize(public_user(user))


async def get_current_user(
    authorization: Optional[str] = Header(default=None),
    store=Depends(get_store),
) -> Dict[str, Any]:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise Unauthorized("Missing token", "Authentication Error")
    return resolve_session_user(store, authorization.split(" ", 1)[1])


# -----------------------------
# Task endpoints
# -----------------------------
@app.post("/tasks")
async def create_task(
    body: Dict[str, Any] = Body(default={}),
    user=Depends(get_current_user),
    engine: TaskEngine = Depends(get_engine),
):
    task = engine.create_task(body, user)
    return send_response(task, "Create task success")


@app.get("/tasks")
async def list_tasks(
    page: Optional[str] = Query(default=None),
    limit: Optional[str] = Query(default=None),
    assignee: Optional[str] = Query(default=None),
    status: Optional[str] = Query(default=None),
    priority: Optional[str] = Query(default=None),
    user=Depends(get_current_user),
    engine: TaskEngine = Depends(get_engine),
):
    params = {"page": page, "limit": limit, "assignee": assignee, "status": status, "priority": priority}
    result = engine.list_tasks(params, user)
    return send_response(result, "Get all tasks success")


@app.get("/tasks/project/{project_id}")
async def list_project_tasks(project_id: str, user=Depends(get_current_user), engine: TaskEngine = Depends(get_engine)):
    tasks = engine.list_project_tasks(project_id)
    return send_response(tasks, "Get tasks by project success")


@app.get("/tasks/{task_id}")
async def get_task(task_id: str, user=Depends(get_current_user), engine: TaskEngine = Depends(get_engine)):
    return send_response(engine.get_task(task_id), "Get single task success")


@app.delete("/tasks/{task_id}")
async def delete_task(task_id: str, user=Depends(get_current_user), engine: TaskEngine = Depends(get_engine)):
    return send_response(engine.delete_task(task_id), "Delete task success")


@app.put("/tasks/{task_id}")
async def edit_task(
    task_id: str,
    body: Dict[str, Any] = Body(default={}),
    user=Depends(get_current_user),
    engine: TaskEngine = Depends(get_engine),
):
    task, notifications = engine.edit_task(task_id, body, user)
    for note in notifications:
        await manager.send(str(note["for_user"]), {"type": "notification", "notification": serialize(note)})
    return send_response(task, "Update task success")


# -----------------------------
# User endpoints
# -----------------------------
def _with_responsibilities(store, users: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    ids = [t for u in users for t in (u.get("responsible_for") or [])]
    tasks = lookup_many(store, "task", ids, ("name", "description", "status"))
    out = []
    for u in users:
        u = public_user(u)
        u["responsible_for"] = [tasks[str(t)] for t in (u.get("responsible_for") or []) if str(t) in tasks]
        out.append(u)
    return out


@app.get("/users")
async def list_users(
    name: Optional[str] = Query(default=None),
    role: Optional[str] = Query(default=None),
    user=Depends(get_current_user),
    store=Depends(get_store),
):
    query: Dict[str, Any] = {"is_deleted": {"$ne": True}}
    if name:
        query["name"] = name
    if role:
        query["role"] = role
    users = store.find_many("user", query, sort=[("created_at", -1)])
    return send_response(_with_responsibilities(store, users), "Get all users success")


@app.get("/users/me")
async def me(user=Depends(get_current_user), store=Depends(get_store)):
    current = store.find_by_id("user", oid(user["id"]))
    if not current:
        raise NotFound("User not found", "Get Current User Error")
    return send_response(_with_responsibilities(store, [current])[0], "Get current user success")


@app.get("/users/{user_id}")
async def get_user(user_id: str, user=Depends(get_current_user), store=Depends(get_store)):
    context = "Get Single User Error"
    found = store.find_by_id("user", oid(user_id, context))
    if not found:
        raise NotFound("User not found", context)
    return send_response(_with_responsibilities(store, [found])[0], "Get single user success")


@app.get("/projects/{project_id}/users")
async def list_project_users(project_id: str, user=Depends(get_current_user), store=Depends(get_store)):
    context = "Get Users By Project Error"
    project = store.find_by_id("project", oid(project_id, context))
    if not project:
        raise NotFound("Project not found", context)
    members = store.find_many("user", {"_id": {"$in": project.get("include_members") or []}})
    return send_response([public_user(m) for m in members], "Get users by project success")


# -----------------------------
# Notifications
# -----------------------------
@app.get("/notifications/users/{user_id}")
async def list_notifications(user_id: str, user=Depends(get_current_user), store=Depends(get_store)):
    context = "Get Notifications Error"
    require_self_or_manager(user_id, user, context)
    notes = store.find_many(
        "notification", {"for_user": oid(user_id, context)}, sort=[("created_at", -1)], limit=50
    )
    return send_response(notes, "Get notifications success")


@app.delete("/notifications/users/{user_id}")
async def mark_notifications_read(user_id: str, user=Depends(get_current_user), store=Depends(get_store)):
    context = "Mark Notifications Read Error"
    require_self_or_manager(user_id, user, context)
    updated = store.update_many("notification", {"for_user": oid(user_id, context), "read": False}, {"read": True})
    return send_response({"updated": updated}, "Mark all notifications read success")


# -----------------------------
# WebSocket manager per user
# -----------------------------
class ConnectionManager:
    def __init__(self):
        self.user_connections: Dict[str, List[WebSocket]] = {}

    async def connect(self, user_id: str, websocket: WebSocket):
        await websocket.accept()
        self.user_connections.setdefault(user_id, []).append(websocket)

    def disconnect(self, user_id: str, websocket: WebSocket):
        conns = self.user_connections.get(user_id, [])
        if websocket in conns:
            conns.remove(websocket)
        if not conns and user_id in self.user_connections:
            del self.user_connections[user_id]

    async def send(self, user_id: str, message: Dict[str, Any]):
        for ws in list(self.user_connections.get(user_id, [])):
            try:
                await ws.send_json(message)
            except (WebSocketDisconnect, RuntimeError):
                logger.debug("Dropping closed websocket for user %s", user_id)
                self.disconnect(user_id, ws)


manager = ConnectionManager()


@app.websocket("/ws/notifications/{user_id}")
async def notifications_ws(
    websocket: WebSocket,
    user_id: str,
    token: Optional[str] = Query(default=None),
    store=Depends(get_store),
):
    try:
        user = resolve_session_user(store, token)
        require_self_or_manager(user_id, user, "Subscribe Notifications Error")
    except Unauthorized as exc:
        logger.info("Rejected notification subscription for user %s: %s", user_id, exc.title)
        await websocket.close(code=WS_1008_POLICY_VIOLATION)
        return
    await manager.connect(user_id, websocket)
    try:
        while True:
            # Keep alive / receive pings from client if any
            await websocket.receive_text()
    except WebSocketDisconnect:
        manager.disconnect(user_id, websocket)


# -----------------------------
# Maintenance
# -----------------------------
@app.post("/maintenance/reindex")
async def reindex(user=Depends(get_current_user), store=Depends(get_store)):
    if user.get("role") != MANAGER:
        raise Unauthorized("Only managers can rebuild indexes", "Reindex Error")
    rewritten = reconcile_indexes(store)
    return send_response({"rewritten": rewritten}, "Reindex success")


# -----------------------------
# Health
# -----------------------------
@app.get("/")
def read_root():
    return {"message": "Task Tracker API running"}


@app.get("/health")
def health():
    response = {
        "backend": "running",
        "database": "not available",
        "database_url": "set" if settings.database_url else "not set",
        "database_name": "set" if settings.database_name else "not set",
        "collections": [],
    }
    db = get_database()
    if db is not None:
        try:
            response["collections"] = db.list_collection_names()[:10]
            response["database"] = "connected"
        except PyMongoError as e:
            logger.warning("Health check failed: %s", e)
            response["database"] = f"error: {str(e)[:50]}"
    return response


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)
