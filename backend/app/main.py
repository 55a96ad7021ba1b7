from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from psycopg import errors as pg_errors
import time
import uuid
from datetime import datetime, timezone
from .config import settings
from .db import get_conn, close_pools
from .errors import ComputationError, ConstraintViolation, DerivationError
from .logs import json_log
from .routers.invoices import router as invoices_router
from .routers.goods_receipts import router as goods_receipts_router
from .routers.supplier_lpos import router as supplier_lpos_router

app = FastAPI(title="Document Derivation API", version=settings.api_version)
STARTED_AT_UTC = datetime.now(timezone.utc)


def _current_request_id(req: Request) -> str:
    return getattr(req.state, "request_id", "") or req.headers.get("x-request-id") or "startup"


def _error_response(status_code: int, detail: str, exc: Exception, **extra) -> JSONResponse:
    content = {"detail": detail, **extra}
    if settings.env in {"local", "dev"}:
        content["error"] = str(exc)
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(ComputationError)
def _computation_error(_req: Request, exc: ComputationError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "items_processed": exc.items_processed, "items_skipped": exc.items_skipped},
    )


@app.exception_handler(ConstraintViolation)
def _constraint_violation(_req: Request, exc: ConstraintViolation):
    content = {"detail": exc.message}
    if settings.env in {"local", "dev"}:
        content.update({"kind": exc.kind, "table": exc.table, "column": exc.column, "constraint": exc.constraint})
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(DerivationError)
def _derivation_error(_req: Request, exc: DerivationError):
    # ReferentialError and friends: the message is meant for the caller as-is.
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# Map common DB constraint/cast errors to 4xx so clients get actionable responses
# instead of generic 500s.
@app.exception_handler(pg_errors.InvalidTextRepresentation)
def _invalid_text_representation(_req: Request, exc: Exception):
    # e.g. a malformed uuid in the path
    return _error_response(400, "invalid value", exc)


@app.exception_handler(pg_errors.ForeignKeyViolation)
def _foreign_key_violation(_req: Request, exc: Exception):
    return _error_response(400, "invalid reference", exc)


@app.exception_handler(pg_errors.UniqueViolation)
def _unique_violation(_req: Request, exc: Exception):
    return _error_response(409, "conflict", exc)


@app.exception_handler(pg_errors.CheckViolation)
def _check_violation(_req: Request, exc: Exception):
    return _error_response(400, "constraint violation", exc)


@app.exception_handler(RequestValidationError)
def _request_validation_error(_req: Request, exc: Exception):
    content = {"detail": "validation failed"}
    if settings.env in {"local", "dev"} and hasattr(exc, "errors"):
        content["errors"] = exc.errors()
    return JSONResponse(status_code=422, content=content)


@app.exception_handler(Exception)
def _unhandled_exception(req: Request, exc: Exception):
    rid = _current_request_id(req)
    json_log(
        "error",
        "http.request.unhandled",
        request_id=rid,
        method=req.method,
        path=req.url.path,
        error=str(exc),
    )
    return _error_response(500, "internal error", exc, request_id=rid)


# Correlation id + basic structured request logging.
@app.middleware("http")
async def _request_logging(request: Request, call_next):
    rid = (request.headers.get("X-Request-Id") or "").strip() or uuid.uuid4().hex
    request.state.request_id = rid
    started = time.time()
    path = request.url.path
    method = request.method
    client_ip = (request.client.host if request.client else None)

    try:
        response = await call_next(request)
    except Exception as exc:
        dur_ms = int((time.time() - started) * 1000)
        json_log(
            "error",
            "http.request.error",
            request_id=rid,
            method=method,
            path=path,
            client_ip=client_ip,
            duration_ms=dur_ms,
            error=str(exc),
        )
        raise

    response.headers["X-Request-Id"] = rid
    response.headers["X-Content-Type-Options"] = "nosniff"
    if path != "/health":
        dur_ms = int((time.time() - started) * 1000)
        json_log(
            "info",
            "http.request",
            request_id=rid,
            method=method,
            path=path,
            status_code=response.status_code,
            client_ip=client_ip,
            duration_ms=dur_ms,
        )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(invoices_router)
app.include_router(goods_receipts_router)
app.include_router(supplier_lpos_router)


@app.on_event("shutdown")
def _shutdown():
    close_pools()


def _db_health():
    try:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1 AS ok")
                cur.fetchone()
        return True, None
    except Exception as exc:
        return False, str(exc)


@app.get("/health")
def health(req: Request):
    request_id = _current_request_id(req)
    ok, err = _db_health()
    content = {
        "status": "ok" if ok else "degraded",
        "env": settings.env,
        "db": "ok" if ok else "down",
        "service": "derivation-engine",
        "version": settings.api_version,
        "started_at": STARTED_AT_UTC.isoformat(),
        "request_id": request_id,
    }
    if not ok:
        if settings.env in {"local", "dev"}:
            content["error"] = err
        return JSONResponse(status_code=503, content=content)
    return content


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("backend.app.main:app", host=settings.api_host, port=settings.api_port)
