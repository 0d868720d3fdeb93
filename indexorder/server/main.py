import time
import json
from typing import Optional

from fastapi import Body, Depends, FastAPI, Query
from fastapi.exceptions import RequestValidationError
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from ..config import load_config
from ..constants import LOG_INCLUDE_REQUEST_CONTENT, LOG_MAX_PATH_LENGTH, SERVICE_NAME, SERVICE_VERSION
from ..exceptions import (
    IndexOrderException,
    InvalidAmount,
    InvalidSignature,
    OracleUnavailable,
    OrderNotFound,
    Unauthorized,
    UnknownAsset,
    UnknownIndex,
    ValidationError,
)
from ..logger import LogManager, get_logger
from .service import OrderService

logger = get_logger(__name__)

STATUS_CODES = {
    ValidationError: 400,
    UnknownAsset: 400,
    UnknownIndex: 400,
    InvalidAmount: 400,
    InvalidSignature: 400,
    Unauthorized: 403,
    OrderNotFound: 404,
    OracleUnavailable: 503,
}

# ============================================================================
# APPLICATION SETUP
# ============================================================================

service: Optional[OrderService] = None

app = FastAPI(title=SERVICE_NAME, description="Index-conditional limit order service.", version=SERVICE_VERSION)

limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


def get_service() -> OrderService:
    if service is None:
        raise IndexOrderException("Service is not initialized")
    return service


# ============================================================================
# MIDDLEWARE
# ============================================================================

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming HTTP requests using the logger."""
    start_time = time.time()

    client_ip = request.client.host if request.client else "unknown"
    method = request.method
    path = request.url.path
    query_params = str(request.query_params) if request.query_params else ""
    full_path = f"{path}?{query_params}" if query_params else path

    # Truncate very long paths to prevent log spam
    if len(full_path) > LOG_MAX_PATH_LENGTH:
        full_path = full_path[:LOG_MAX_PATH_LENGTH] + "...[TRUNCATED]"

    body = None
    if LOG_INCLUDE_REQUEST_CONTENT and method == "POST":
        body_bytes = await request.body()
        if body_bytes:
            try:
                parsed_value = json.loads(body_bytes.decode("utf-8"))
                # Never log key material
                if isinstance(parsed_value, dict) and "privateKey" in parsed_value:
                    parsed_value["privateKey"] = "***"
                body = json.dumps(parsed_value, indent=2)
            except (json.JSONDecodeError, UnicodeDecodeError):
                body = body_bytes.decode("utf-8", errors="replace")

    request_body_log = f"\n\nIncoming Request:\n{body}\n" if body else ""
    logger.info(f"<-- {client_ip} - \"{method} {full_path} HTTP/1.1\"{request_body_log}")

    try:
        response = await call_next(request)
    except Exception as e:
        process_time = time.time() - start_time
        logger.error(f"--> {client_ip} - \"{method} {full_path} HTTP/1.1\" ERROR ({process_time:.3f}s): {e}")
        raise
    process_time = time.time() - start_time
    logger.info(f"--> {client_ip} - \"{method} {full_path} HTTP/1.1\" {response.status_code}⁢ ({process_time:.3f}s)")
    return response


# ============================================================================
# ERROR HANDLERS
# ============================================================================

@app.exception_handler(IndexOrderException)
async def index_order_exception_handler(request: Request, exc: IndexOrderException):
    status_code = 500
    for exc_type, code in STATUS_CODES.items():
        if isinstance(exc, exc_type):
            status_code = code
            break
    if status_code == 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content=ValidationError(
            "Malformed request",
            details={"errors": json.loads(json.dumps(exc.errors(), default=str))},
        ).to_dict(),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal Server Error", "code": "INTERNAL_ERROR"},
    )


# ============================================================================
# LIFECYCLE
# ============================================================================

@app.on_event("startup")
async def startup():
    global service
    if service is not None:
        return
    config = load_config()
    LogManager().set_level(config.server.log_level)
    config.validate()
    service = OrderService(config)
    await service.startup()


@app.on_event("shutdown")
async def shutdown():
    global service
    if service is not None:
        await service.shutdown()
        service = None
        logger.info("Service stopped.")


# ============================================================================
# REFERENCE DATA
# ============================================================================

@app.get("/health")
async def health(svc: OrderService = Depends(get_service)):
    return svc.health()


@app.get("/indices")
async def get_indices(svc: OrderService = Depends(get_service)):
    return await svc.indices()


@app.get("/indices/{index_id}")
async def get_index(index_id: int, svc: OrderService = Depends(get_service)):
    return await svc.index(index_id)


@app.get("/operators")
async def get_operators(svc: OrderService = Depends(get_service)):
    return svc.operators()


@app.get("/tokens")
async def get_tokens(svc: OrderService = Depends(get_service)):
    return svc.token_list()


@app.get("/orders/examples")
async def get_examples(svc: OrderService = Depends(get_service)):
    return svc.examples()


# ============================================================================
# ORDER FLOW
# ============================================================================

@app.post("/orders/prepare")
@limiter.limit("30/minute")
async def prepare_order(request: Request, body: dict = Body(...), svc: OrderService = Depends(get_service)):
    return await svc.prepare(body)


@app.post("/orders/submit")
@limiter.limit("30/minute")
async def submit_order(request: Request, body: dict = Body(...), svc: OrderService = Depends(get_service)):
    return await svc.submit(body)


@app.post("/orders/validate")
async def validate_order(body: dict = Body(...), svc: OrderService = Depends(get_service)):
    return svc.validate(body)


# ============================================================================
# ORDER MANAGEMENT
# ============================================================================

@app.get("/orders/active/{maker}")
async def get_active_orders(
    maker: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=500),
    svc: OrderService = Depends(get_service),
):
    return await svc.active_orders(maker, page, limit)


@app.get("/orders/history/{maker}")
async def get_order_history(
    maker: str,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    status: str = Query("all"),
    svc: OrderService = Depends(get_service),
):
    return await svc.history(maker, page, limit, status)


@app.get("/orders/details/{order_hash}")
async def get_order_details(order_hash: str, svc: OrderService = Depends(get_service)):
    return await svc.details(order_hash)


@app.post("/orders/can-cancel")
async def can_cancel_order(body: dict = Body(...), svc: OrderService = Depends(get_service)):
    return await svc.can_cancel(body)


@app.post("/orders/cancel")
@limiter.limit("10/minute")
async def cancel_order(request: Request, body: dict = Body(...), svc: OrderService = Depends(get_service)):
    return await svc.cancel(body)


@app.get("/monitor/orders")
async def get_monitored_orders(svc: OrderService = Depends(get_service)):
    reports = {report.order_hash: report for report in svc.monitor.reports()}
    orders = []
    for tracked in svc.monitor.tracked():
        report = reports.get(tracked.order_hash)
        orders.append({
            "orderHash": tracked.order_hash,
            "maker": tracked.maker,
            "condition": tracked.condition.to_dict(),
            "expiration": tracked.expiration,
            "state": tracked.lifecycle.state.value,
            "lastCheck": report.to_dict() if report else None,
        })
    return {"success": True, "running": svc.monitor.running, "orders": orders, "total": len(orders)}
