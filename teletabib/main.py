"""TeleTabib registration API - FastAPI application."""
# Load .env before any app code that might read config
from dotenv import load_dotenv
from pathlib import Path
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from teletabib.config import get_settings
from teletabib.database import Base, engine
from teletabib.errors import ApiError
from teletabib.logging_config import setup_logging
# Import models so Base.metadata has all tables before create_all (schema source of truth)
from teletabib.models import User, AuditLog  # noqa: F401
from teletabib.routers import auth
from teletabib.services.staging import get_staging_store, run_staging_sweep_job

settings = get_settings()
setup_logging(settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name, debug=settings.debug)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(auth.debug_router)


@app.exception_handler(ApiError)
def api_error_handler(request: Request, exc: ApiError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg", ""),
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": "Validation failed", "errors": errors},
    )


@app.on_event("startup")
def startup():
    try:
        Base.metadata.create_all(bind=engine)
    except SQLAlchemyError as e:
        logger.warning("Database startup failed (tables skipped). Check DATABASE_URL and network. Error: %s", e)

    # Sweep staged signups whose retention has elapsed
    scheduler = BackgroundScheduler()
    scheduler.add_job(
        run_staging_sweep_job,
        "interval",
        seconds=settings.staging_sweep_seconds,
        args=[get_staging_store()],
        id="staging-sweep",
        replace_existing=True,
    )
    scheduler.start()
    app.state.scheduler = scheduler
    logger.info("Staging sweep scheduled every %ss", settings.staging_sweep_seconds)


@app.on_event("shutdown")
def shutdown():
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        scheduler.shutdown(wait=False)


@app.get("/")
def root():
    return {"app": settings.app_name, "status": "ok"}


@app.get("/health")
@app.get("/api/health")
def health():
    return {"status": "healthy"}
