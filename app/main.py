import os
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from .config import settings
from .db import Base, engine, sqlite_file_path
from .logging import setup_logging, RequestIdMiddleware
from .auth.router import router as auth_router
from .routes.activity import router as activity_router
from .routes.admin import router as admin_router
from .routes.calendar import router as calendar_router
from .routes.communications import router as communications_router
from .routes.files import router as files_router, uploads_router
from .routes.inventory import router as inventory_router
from .routes.job_types import router as job_types_router
from .routes.milestones import router as milestones_router
from .routes.packages import router as packages_router
from .routes.places import router as places_router
from .routes.projects import router as projects_router
from .routes.tasks import router as tasks_router
from .routes.templates import router as templates_router
from .routes.users import router as users_router
from .services.scheduler import BackupScheduler


def _validation_message(exc: RequestValidationError) -> str:
    """First validation problem as a single readable sentence."""
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    err = errors[0]
    loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path", "form")]
    field = loc[-1] if loc else "request"
    msg = str(err.get("msg", "is invalid"))
    if err.get("type") == "missing" or msg.endswith("is required"):
        return f"{field} is required"
    return f"{field}: {msg}"


def create_app() -> FastAPI:
    setup_logging()
    log = structlog.get_logger()
    app = FastAPI(title=settings.app_name)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        fields = [
            {"field": ".".join(str(p) for p in e.get("loc", ())[1:]), "message": str(e.get("msg", ""))}
            for e in exc.errors()
        ]
        return JSONResponse(status_code=400, content={"detail": _validation_message(exc), "errors": fields})

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        log.error("unhandled_error", path=request.url.path, method=request.method, error=str(exc), exc_info=exc)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    # Routers
    app.include_router(auth_router, prefix="/api")
    app.include_router(projects_router, prefix="/api")
    app.include_router(milestones_router, prefix="/api")
    app.include_router(tasks_router, prefix="/api")
    app.include_router(files_router, prefix="/api")
    app.include_router(communications_router, prefix="/api")
    app.include_router(calendar_router, prefix="/api")
    app.include_router(activity_router, prefix="/api")
    # packages before inventory: /inventory/{item_id} would shadow /inventory/packages
    app.include_router(packages_router, prefix="/api")
    app.include_router(inventory_router, prefix="/api")
    app.include_router(job_types_router, prefix="/api")
    app.include_router(templates_router, prefix="/api")
    app.include_router(admin_router, prefix="/api")
    app.include_router(users_router, prefix="/api")
    app.include_router(places_router, prefix="/api")
    app.include_router(uploads_router)

    app.state.backup_scheduler = BackupScheduler()

    @app.on_event("startup")
    def _startup():
        log.info("startup_begin", environment=settings.environment)
        # Ensure local SQLite directory exists
        db_file = sqlite_file_path()
        if db_file and os.path.dirname(db_file):
            os.makedirs(os.path.dirname(db_file), exist_ok=True)
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
        os.makedirs(settings.upload_dir, exist_ok=True)
        if settings.backup_scheduler_enabled:
            app.state.backup_scheduler.start_from_schedule()
        log.info("startup_complete")

    @app.on_event("shutdown")
    def _shutdown():
        app.state.backup_scheduler.stop()

    @app.get("/api/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
