from fastapi import FastAPI, Depends, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import structlog

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from trading_api.config import settings
from trading_api.database import init_db, close_db, get_db
from trading_api.exceptions import TradingError
from trading_api.logging_config import setup_logging
from trading_api.middleware.correlation import CorrelationIdMiddleware

# Import models so they are registered with Base.metadata
import trading_api.models  # noqa: F401

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("starting_trading_core", env=settings.ENVIRONMENT)
    await init_db()
    yield
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Global exception handlers: normalize all errors to structured format:
# {"error": {"code": "...", "message": "..."}}
# ---------------------------------------------------------------------------

@app.exception_handler(TradingError)
async def trading_error_handler(request: Request, exc: TradingError) -> JSONResponse:
    logger.info(
        "request_rejected",
        code=exc.code,
        status=exc.status_code,
        message=exc.message,
    )
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, str):
        detail = {"error": {"code": "HTTP_ERROR", "message": detail}}
    elif isinstance(detail, dict) and "error" not in detail:
        detail = {"error": detail}
    return JSONResponse(status_code=exc.status_code, content=detail)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Request validation failed",
                "details": jsonable_encoder(exc.errors()),
            }
        },
    )


app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "X-Requested-With", "X-Request-ID", "X-User-ID", "X-User-Email"],
)


@app.get("/health", tags=["System"])
async def health(response: Response, db: AsyncSession = Depends(get_db)):
    health_status = {"status": "healthy", "version": settings.APP_VERSION, "checks": {}}

    try:
        await db.execute(text("SELECT 1"))
        health_status["checks"]["db"] = "ok"
    except Exception as e:
        logger.error("health_check_db_failed", error=str(e))
        health_status["checks"]["db"] = "error"
        health_status["status"] = "unhealthy"

    if health_status["status"] == "unhealthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return health_status


# --- Routers ---
from trading_api.routes.purchases import router as purchases_router  # noqa: E402
from trading_api.routes.purchase_expenses import router as purchase_expenses_router  # noqa: E402
from trading_api.routes.expense_categories import router as expense_categories_router  # noqa: E402
from trading_api.routes.products import router as products_router  # noqa: E402
from trading_api.routes.reports import router as reports_router  # noqa: E402
from trading_api.routes.suppliers import router as suppliers_router  # noqa: E402
from trading_api.jobs.payable_postings import router as jobs_router  # noqa: E402

app.include_router(purchases_router, prefix="/api/v1/purchases", tags=["Purchases"])
app.include_router(purchase_expenses_router, prefix="/api/v1/purchase-expenses", tags=["Purchase Expenses"])
app.include_router(expense_categories_router, prefix="/api/v1/expense-categories", tags=["Expense Categories"])
app.include_router(products_router, prefix="/api/v1/products", tags=["Products"])
app.include_router(reports_router, prefix="/api/v1/reports", tags=["Reports"])
app.include_router(suppliers_router, prefix="/api/v1/suppliers", tags=["Suppliers"])
app.include_router(jobs_router, prefix="/internal/jobs", tags=["Internal Jobs"])
