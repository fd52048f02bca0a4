import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .errors import StoreError, TaskError
from .logging_setup import setup_logging
from .repositories import TaskStore, build_store
from .routers import todos as todos_router
from .service import TaskService
from .settings import Settings, get_settings

logger = logging.getLogger("todos.system")

openapi_tags = [
    {"name": "health", "description": "Service health and status endpoints."},
    {
        "name": "todos",
        "description": "Task lifecycle: create, edit, trash, restore, permanent delete, purge and reorder.",
    },
]


def _error_body(error: str, message: str, detail) -> dict:
    return {"error": error, "message": message, "detail": detail}


# PUBLIC_INTERFACE
def create_app(settings: Optional[Settings] = None, store: Optional[TaskStore] = None) -> FastAPI:
    """
    Build the FastAPI application.

    The store handle is created here (or injected by the caller), initialized
    when the app starts and closed when it shuts down. The TaskService is
    created inside the running event loop and kept on `app.state.service`.
    """
    settings = settings or get_settings()
    setup_logging(settings.log_level, settings.log_dir)
    task_store = store or build_store(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        task_store.init()
        app.state.service = TaskService(task_store, default_category=settings.default_category)
        logger.info(
            "system.start",
            extra={"category": "system", "event": "system.start", "backend": task_store.backend_name},
        )
        try:
            yield
        finally:
            task_store.close()
            logger.info("system.stop", extra={"category": "system", "event": "system.stop"})

    app = FastAPI(
        title="Todo Backend",
        description="Backend API for a personal task list with ordering and a trash.",
        version="0.2.0",
        openapi_tags=openapi_tags,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = task_store

    # Configure CORS based on settings (.env -> CORS_ALLOW_ORIGINS), with '*' fallback
    allow_all = (settings.cors_allow_origins == ["*"]) or (len(settings.cors_allow_origins) == 0)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if allow_all else settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """
        Return a consistent JSON structure for request validation errors.

        Response format:
            {
                "error": "ValidationError",
                "message": "Request validation failed",
                "detail": [... pydantic/fastapi error details ...]
            }

        Validator exceptions carried in each error's `ctx` are rendered as strings.
        """
        detail = jsonable_encoder(exc.errors(), custom_encoder={Exception: str})
        return JSONResponse(
            status_code=422,
            content=_error_body("ValidationError", "Request validation failed", detail),
        )

    @app.exception_handler(TaskError)
    async def task_error_handler(request: Request, exc: TaskError) -> JSONResponse:
        """
        Translate service and store failures into the same JSON envelope.
        4xx for validation, state and not-found errors; 500 for store errors.
        """
        if isinstance(exc, StoreError):
            logger.error(
                "request.store_error",
                extra={"category": "http", "event": "request.store_error", "path": request.url.path},
            )
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(type(exc).__name__, exc.message, exc.message),
        )

    # PUBLIC_INTERFACE
    @app.get("/", summary="Health Check", tags=["health"])
    def health_check():
        """
        Health check endpoint.

        Returns:
            A JSON object indicating service health.
        """
        return {"message": "Healthy", "backend": task_store.backend_name}

    app.include_router(todos_router.router)
    return app


app = create_app()
