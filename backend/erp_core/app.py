import logging
import os
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import auth_router, fees_router, init_erp_core
from .config import settings
from .database import get_db_session
from .errors import ERPError, ServerError

# Configure Logging
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(message)s",
    handlers=[logging.StreamHandler()],
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.jwt_secret_generated:
        logger.warning("ERP_JWT_SECRET is not set; using a random secret, sessions end on restart.")
    try:
        logger.info("Initializing database...")
        init_erp_core()
        logger.info("Database initialized.")
    except SQLAlchemyError:
        logger.exception("Startup DB Error")
        raise
    yield
    logger.info("Shutting down...")


app = FastAPI(title="Classbridge ERP API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _describe_validation_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    if first.get("type") == "json_invalid":
        return "Invalid JSON body"
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    if first.get("type") == "missing":
        return f"{field or 'Request body'} is required"
    return f"Invalid value for {field}: {first.get('msg')}" if field else str(first.get("msg"))


@app.exception_handler(ERPError)
async def erp_error_handler(request: Request, exc: ERPError):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"message": _describe_validation_error(exc)})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=ServerError.status_code, content={"message": ServerError.default_message})


@app.get("/health")
def health(db: Session = Depends(get_db_session)):
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Health check failed")
        return JSONResponse(status_code=500, content={"message": "Database error"})
    return {"status": "ok"}


app.include_router(auth_router)
app.include_router(fees_router)


def run() -> None:
    import uvicorn

    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))
