import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from busbooking.core.config import settings
from busbooking.core.errors import DomainError
from busbooking.core.logging import configure_logging
from busbooking.api.v1.api import api_router
from busbooking.db.session import engine
from busbooking.db.schema import resolve_schema_state, require_current_schema

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    state = resolve_schema_state(engine)
    if settings.SCHEMA_CHECK:
        require_current_schema(state)
    app.state.schema = state
    logger.info("%s starting (env=%s, schema=%s)", settings.APP_NAME, settings.ENV, state.revision)
    yield


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

# CORS: use CORS_ORIGINS from env in production; default to localhost for dev
_default_origins = [
    "http://127.0.0.1:5173", "http://localhost:5173",
    "http://127.0.0.1:8080", "http://localhost:8080",
]
_origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()] if settings.CORS_ORIGINS else _default_origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "ok": False,
            "errorKind": "ValidationError",
            "detail": "invalid request",
            "errors": jsonable_encoder(exc.errors(), exclude={"ctx", "url"}),
        },
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "errorKind": "HTTPError", "detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError):
    # storage details stay in the log
    logger.exception("storage error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=503,
        content={"ok": False, "errorKind": "StorageUnavailable", "detail": "service temporarily unavailable"},
    )


app.include_router(api_router)


@app.get("/health")
def health():
    schema = getattr(app.state, "schema", None)
    return {"status": "ok", "schema": schema.revision if schema else None}
