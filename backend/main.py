import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.config import (
    CORS_ALLOW_CREDENTIALS,
    CORS_ALLOW_HEADERS,
    CORS_ALLOW_METHODS,
    CORS_ALLOW_ORIGINS,
    LOG_LEVEL,
)
from backend.errors import MalformedEvidence, MarkingError
from backend.routers import attendance, auth, core, courses, evidence, sessions
from database.db import create_tables

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@asynccontextmanager
async def lifespan(_app: FastAPI):
    create_tables()
    yield


configure_logging()

app = FastAPI(title="Classmark API", lifespan=lifespan)

# -----------------------------
# CORS (React dev server)
# -----------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials=CORS_ALLOW_CREDENTIALS,
    allow_methods=CORS_ALLOW_METHODS,
    allow_headers=CORS_ALLOW_HEADERS,
)


@app.exception_handler(MarkingError)
async def marking_error_handler(request: Request, exc: MarkingError):
    if exc.system:
        logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.code)
    else:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc.code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    # Marking clients only understand the {success, reason, message} shape.
    if request.url.path == "/attendance/mark":
        logger.info("%s %s rejected: unreadable body", request.method, request.url.path)
        problem = MalformedEvidence("Submission could not be read.")
        return JSONResponse(status_code=problem.status_code, content=problem.to_payload())
    return await request_validation_exception_handler(request, exc)


app.include_router(core.router)
app.include_router(auth.router)
app.include_router(attendance.router)
app.include_router(evidence.router)
app.include_router(sessions.router)
app.include_router(courses.router)
