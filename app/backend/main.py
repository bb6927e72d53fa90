from fastapi import FastAPI, HTTPException, Depends, Query, Request, Response, WebSocket
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError, PyMongoError
from redis.asyncio import Redis
from starlette.exceptions import HTTPException as StarletteHTTPException
from typing import Any, Dict
from datetime import datetime, timezone
import asyncio
import logging
import time

from ai_service import AIClient
from auth import TOKEN_COOKIE, TokenService, get_current_user, hash_password, verify_password
from config import configure_logging, settings
from database import Database, is_valid_id
from file_tree import is_file_tree
from models import AddUsersRequest, ChatRequest, FileTreeUpdate, ProjectCreate, TemplateRequest, UserCredentials
from prompts import SCAFFOLDS, SYSTEM_PROMPT, TEMPLATE_CLASSIFIER_PROMPT, template_prompts
from ws.connection_manager import ConnectionManager
from ws.message_cache import MessageCache
from ws.relay import ProjectRelay

configure_logging()
settings.warn_missing()
logger = logging.getLogger("codecollab")

FEATURES = [
    "Collaborative Coding",
    "Real-time Chat",
    "AI Code Generation",
    "Project Templates",
    "File Management",
]
STARTED_AT = time.monotonic()

app = FastAPI(title="CodeCollab API", version="2.0.0")

# CORS middleware; any origin is accepted outside production
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_origin_regex=None if settings.is_production else ".*",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Set-Cookie"],
)


@app.middleware("http")
async def cross_origin_isolation(request: Request, call_next):
    """The in-browser sandbox needs SharedArrayBuffer, which requires cross-origin isolation."""
    response = await call_next(request)
    response.headers["Cross-Origin-Opener-Policy"] = "same-origin"
    response.headers["Cross-Origin-Embedder-Policy"] = "require-corp"
    return response


# Shared services
db = Database()
redis_client = Redis.from_url(settings.redis_url, decode_responses=True)
message_cache = MessageCache(redis_client, ttl_seconds=settings.message_ttl_seconds)
tokens = TokenService(redis_client, settings)
ai_client = AIClient(settings)
manager = ConnectionManager()
relay = ProjectRelay(manager, message_cache, db, ai_client, tokens, settings)
app.state.tokens = tokens


@app.on_event("startup")
async def startup_event():
    """Check the backing stores before accepting traffic"""
    if not await db.ping():
        raise RuntimeError("MongoDB is unreachable")
    await db.ensure_indexes()
    logger.info("MongoDB connected successfully")

    try:
        redis_ok = await asyncio.wait_for(message_cache.ping(), timeout=5)
    except asyncio.TimeoutError:
        redis_ok = False
    if redis_ok:
        logger.info("Redis connected successfully")
    else:
        logger.warning("Redis connection failed; server will continue without message caching")


@app.on_event("shutdown")
async def shutdown_event():
    """Close sockets, cancel pending AI work and release clients"""
    await relay.shutdown()
    await redis_client.aclose()
    db.close()
    logger.info("Shutdown complete")


# Error responses always carry {"status": "error", "message": ...}
def error_response(status_code: int, message: Any, headers: Dict[str, str] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"status": "error", "message": message}, headers=headers)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, exc.detail, getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if not errors:
        return error_response(400, "Invalid request")
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
    return error_response(400, message)


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    return error_response(409, "Duplicate entry")


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("API error on %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
    message = "Internal Server Error" if settings.is_production else str(exc) or "Internal Server Error"
    return error_response(500, message)


# Health check
@app.get("/")
async def root():
    return {
        "status": "success",
        "message": "CodeCollab API is running",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(time.monotonic() - STARTED_AT, 3),
        "features": FEATURES,
    }


@app.get("/api/info")
async def api_info():
    return {
        "name": "CodeCollab API",
        "version": app.version,
        "endpoints": {
            "collaborative": {"users": "/users", "projects": "/projects", "ai": "/ai", "socket": "/ws"},
            "codeGeneration": {"chat": "/chat", "templates": "/template"},
        },
        "features": FEATURES,
    }


# Code generation endpoints
@app.post("/chat")
async def chat(request: ChatRequest):
    """Join the system prompt and every turn into one prompt and return the model text"""
    content = f"{SYSTEM_PROMPT}\n\n" + "\n".join(m.content for m in request.messages)
    try:
        output = await ai_client.generate([{"role": "user", "content": content}], max_tokens=8000)
        return {"response": output}
    except HTTPException:
        raise
    except Exception as e:
        logger.error("Chat request error: %s", e)
        raise HTTPException(status_code=500, detail="Failed to process chat request")


@app.post("/template")
async def template(request: TemplateRequest):
    """Pick the react or node scaffold for a free-text project description"""
    messages = [{"role": "user", "content": TEMPLATE_CLASSIFIER_PROMPT + request.prompt}]
    try:
        answer = (await ai_client.generate(messages, max_tokens=200)).strip().lower()
    except HTTPException:
        raise
    except Exception as e:
        logger.error("Template request error: %s", e)
        raise HTTPException(status_code=500, detail="Failed to process template request")

    if answer not in SCAFFOLDS:
        logger.info("Template classifier answered %r", answer[:50])
        raise HTTPException(status_code=403, detail="You can't access this")
    prompts, ui_prompts = template_prompts(answer)
    return {"prompts": prompts, "uiPrompts": ui_prompts}


@app.get("/ai/get-result")
async def get_ai_result(prompt: str = Query(..., min_length=1), user: dict = Depends(get_current_user)):
    result = await ai_client.generate_result(prompt)
    return {"result": result}


# Users endpoints
def _set_token_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        TOKEN_COOKIE,
        token,
        max_age=tokens.ttl_seconds,
        httponly=True,
        samesite="none" if settings.is_production else "lax",
        secure=settings.is_production,
    )


@app.post("/users/register", status_code=201)
async def register(credentials: UserCredentials, response: Response):
    if await db.get_user_by_email(credentials.email):
        raise HTTPException(status_code=409, detail="Email already registered")
    user = await db.create_user(credentials.email, hash_password(credentials.password))
    token = tokens.create_token(user)
    _set_token_cookie(response, token)
    return {"user": user, "token": token}


@app.post("/users/login")
async def login(credentials: UserCredentials, response: Response):
    user = await db.get_user_by_email(credentials.email, include_password=True)
    if not user or not verify_password(credentials.password, user.pop("password", "") or ""):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    token = tokens.create_token(user)
    _set_token_cookie(response, token)
    return {"user": user, "token": token}


@app.get("/users/profile")
async def profile(user: dict = Depends(get_current_user)):
    return {"user": {"id": user.get("id"), "email": user["email"]}}


@app.get("/users/logout")
async def logout(request: Request, response: Response, user: dict = Depends(get_current_user)):
    await tokens.revoke(request.state.token)
    response.delete_cookie(TOKEN_COOKIE)
    return {"message": "Logged out successfully"}


@app.get("/users/all")
async def all_users(user: dict = Depends(get_current_user)):
    users = await db.get_all_users(exclude_user_id=user.get("id"))
    return {"users": users}


# Projects endpoints
async def _member_project(project_id: str, user: dict) -> dict:
    if not is_valid_id(project_id):
        raise HTTPException(status_code=400, detail="Invalid ID format")
    project = await db.get_project(project_id)
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    if user.get("id") not in project.get("users", []):
        raise HTTPException(status_code=403, detail="User not belong to this project")
    return project


@app.post("/projects/create", status_code=201)
async def create_project(body: ProjectCreate, user: dict = Depends(get_current_user)):
    try:
        project = await db.create_project(body.name, user.get("id"))
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="Project name already exists")
    return project


@app.get("/projects/all")
async def list_projects(user: dict = Depends(get_current_user)):
    projects = await db.get_projects_for_user(user.get("id"))
    return {"projects": projects}


@app.put("/projects/add-user")
async def add_users(body: AddUsersRequest, user: dict = Depends(get_current_user)):
    await _member_project(body.projectId, user)
    if not all(is_valid_id(user_id) for user_id in body.users):
        raise HTTPException(status_code=400, detail="Invalid userId(s) in users array")
    project = await db.add_users_to_project(body.projectId, body.users)
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    await relay.notify_project_update(project)
    return {"project": project}


@app.get("/projects/get-project/{project_id}")
async def get_project(project_id: str, user: dict = Depends(get_current_user)):
    project = await _member_project(project_id, user)
    return {"project": project}


@app.put("/projects/update-file-tree")
async def update_file_tree(body: FileTreeUpdate, user: dict = Depends(get_current_user)):
    if not is_file_tree(body.fileTree):
        raise HTTPException(status_code=400, detail="fileTree is not a valid file tree")
    await _member_project(body.projectId, user)
    try:
        project = await db.update_file_tree(body.projectId, body.fileTree)
    except PyMongoError as e:
        logger.error("Error updating file tree for %s: %s", body.projectId, e)
        raise HTTPException(status_code=500, detail="Failed to update project file tree")
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    await relay.notify_project_update(project)
    return {"project": project}


@app.delete("/projects/delete-project/{project_id}")
async def delete_project(project_id: str, user: dict = Depends(get_current_user)):
    await _member_project(project_id, user)
    if not await db.delete_project(project_id):
        raise HTTPException(status_code=404, detail="Project not found")
    return {"message": "Project deleted successfully"}


# Real-time project room
@app.websocket("/ws")
async def project_socket(websocket: WebSocket):
    """Chat relay for one project; see ProjectRelay for the event protocol"""
    await relay.serve(websocket)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
