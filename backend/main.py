import logging
import sys
import time
from pathlib import Path
from typing import AsyncIterator, Optional, Tuple

import pydantic
from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, Response
from fastapi.staticfiles import StaticFiles
from starlette.datastructures import UploadFile as StarletteUploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import Scope

from attachments import AttachmentStorage, AttachmentUpload
from auth import get_current_user
from config import Settings
from database import DocumentStore
from errors import (
    AppError,
    StoreError,
    ValidationError,
    app_error_handler,
    http_exception_handler,
    python_exception_handler,
    validation_exception_handler,
)
from logging_setup import setup_logging
from schemas import AuthResponse, CredentialsPayload, CurrentUser, TaskCreate, TaskUpdate
from security import CredentialCodec
from tasks import TaskRepository
from users import UserService

logger = logging.getLogger(__name__)

FORM_MEDIA_TYPES = ("multipart/form-data", "application/x-www-form-urlencoded")

# Added to every response unless a handler already set them
SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
    "X-DNS-Prefetch-Control": "off",
}

router = APIRouter()


# Dependencies
def get_users(request: Request) -> UserService:
    return request.app.state.users


def get_tasks(request: Request) -> TaskRepository:
    return request.app.state.tasks


async def get_task_submission(
    request: Request,
) -> AsyncIterator[Tuple[TaskCreate, Optional[AttachmentUpload]]]:
    """
    Fields of a new task from a form (the browser client) or a JSON object.

    An empty body creates an empty task; any other content type is rejected
    rather than ignored.
    """
    media_type = request.headers.get("content-type", "").split(";")[0].strip().lower()
    form = None
    upload = None
    if media_type in FORM_MEDIA_TYPES:
        form = await request.form()
        data = {"title": form.get("title"), "description": form.get("description")}
        attachment = form.get("attachment")
        if isinstance(attachment, StarletteUploadFile) and attachment.filename:
            upload = AttachmentUpload(filename=attachment.filename, file=attachment.file)
    elif media_type == "application/json":
        try:
            data = await request.json()
        except ValueError as exc:
            raise ValidationError("invalid request") from exc
    elif await request.body():
        raise ValidationError("unsupported content type")
    else:
        data = None

    try:
        try:
            fields = TaskCreate.model_validate(data if data is not None else {})
        except pydantic.ValidationError as exc:
            raise ValidationError("invalid request") from exc
        yield fields, upload
    finally:
        if form is not None:
            await form.close()


class PublicFiles(StaticFiles):
    """Public client files; unknown non-API paths fall back to index.html"""

    def __init__(self, *, api_prefix: str, **kwargs):
        super().__init__(**kwargs)
        self._api_prefix = api_prefix.rstrip("/")

    def _is_api_path(self, path: str) -> bool:
        return path == self._api_prefix or path.startswith(self._api_prefix + "/")

    async def get_response(self, path: str, scope: Scope) -> Response:
        try:
            return await super().get_response(path, scope)
        except StarletteHTTPException as exc:
            if exc.status_code != status.HTTP_404_NOT_FOUND or self._is_api_path(scope["path"]):
                raise
        index = Path(self.directory) / "index.html"
        if index.is_file():
            return FileResponse(index)
        raise StarletteHTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="404 - Not Found (no index.html)"
        )


# Auth Endpoints
@router.post("/auth/register", response_model=AuthResponse)
def register(
    payload: Optional[CredentialsPayload] = None,
    users: UserService = Depends(get_users),
):
    payload = payload or CredentialsPayload()
    return users.register(payload.username, payload.password)


@router.post("/auth/login", response_model=AuthResponse)
def login(
    payload: Optional[CredentialsPayload] = None,
    users: UserService = Depends(get_users),
):
    payload = payload or CredentialsPayload()
    return users.login(payload.username, payload.password)


# Task Endpoints
@router.get("/tasks")
def list_tasks(
    current: CurrentUser = Depends(get_current_user),
    tasks: TaskRepository = Depends(get_tasks),
):
    return [t.to_json() for t in tasks.list_tasks(current.id)]


@router.post("/tasks", status_code=status.HTTP_201_CREATED)
def create_task(
    current: CurrentUser = Depends(get_current_user),
    submission: Tuple[TaskCreate, Optional[AttachmentUpload]] = Depends(get_task_submission),
    tasks: TaskRepository = Depends(get_tasks),
):
    fields, upload = submission
    task = tasks.create_task(current.id, fields.title, fields.description, upload)
    return task.to_json()


@router.put("/tasks/{task_id}")
def update_task(
    task_id: str,
    data: Optional[TaskUpdate] = None,
    current: CurrentUser = Depends(get_current_user),
    tasks: TaskRepository = Depends(get_tasks),
):
    changes = (data or TaskUpdate()).changes()
    task = tasks.update_task(current.id, task_id, **changes)
    return task.to_json()


@router.delete("/tasks/{task_id}")
def delete_task(
    task_id: str,
    current: CurrentUser = Depends(get_current_user),
    tasks: TaskRepository = Depends(get_tasks),
):
    deleted = tasks.delete_task(current.id, task_id)
    return {"ok": True, "deleted": deleted.to_json()}


# Health
@router.get("/health")
def health(request: Request):
    return {"ok": True, "env": request.app.state.settings.ENVIRONMENT}


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the application and its components.

    Raises:
        StoreError: The data, public or uploads directory cannot be prepared
    """
    settings = settings or Settings()
    setup_logging(settings.LOG_LEVEL)

    if settings.uses_default_secret:
        logger.warning("SECRET_KEY is the built-in default; set it in production")

    store = DocumentStore(settings.db_file)
    store.initialize()
    for directory in (settings.public_dir, settings.uploads_dir):
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreError(f"cannot create directory {directory}: {exc}") from exc

    codec = CredentialCodec(settings)
    attachments = AttachmentStorage(settings.uploads_dir, settings.max_upload_bytes)

    app = FastAPI(title=settings.PROJECT_NAME, version=settings.VERSION)
    app.state.settings = settings
    app.state.codec = codec
    app.state.store = store
    app.state.users = UserService(store, codec)
    app.state.tasks = TaskRepository(store, attachments)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        process_time = (time.time() - start_time) * 1000
        client_ip = request.client.host if request.client else "Unknown"
        logger.info(
            "%s %s %d %.2fms %s",
            request.method,
            request.url.path,
            response.status_code,
            process_time,
            client_ip,
        )
        return response

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register exception handlers
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, python_exception_handler)

    app.include_router(router, prefix=settings.API_PREFIX)

    # Serve uploaded attachments and the public client
    app.mount("/uploads", StaticFiles(directory=str(settings.uploads_dir)), name="uploads")
    app.mount(
        "/",
        PublicFiles(
            api_prefix=settings.API_PREFIX, directory=str(settings.public_dir), html=True
        ),
        name="public",
    )

    logger.info("Public dir: %s", settings.public_dir)
    logger.info("DB file: %s", settings.db_file)
    return app


def run() -> None:
    import uvicorn

    settings = Settings()
    try:
        app = create_app(settings)
    except StoreError as exc:
        logger.error("Failed to prepare data directories: %s", exc)
        sys.exit(1)

    logger.info("Server listening on http://%s:%s", settings.HOST, settings.PORT)
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_config=None)


if __name__ == "__main__":
    run()
