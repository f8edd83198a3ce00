import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from coursepay.config import settings
from coursepay.database import create_db_and_tables
from coursepay.exceptions import CoursePayError, VerificationError
from coursepay.jobs.payment_reconciliation import run_reconciliation_loop
from coursepay.routes import admin, health, orders, payments, secure_links

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Run DB creation ONLY in local
    if settings.env == "local":
        await create_db_and_tables()

    sweeper = None
    if settings.reconciliation_enabled:
        sweeper = asyncio.create_task(run_reconciliation_loop())
    yield

    if sweeper is not None:
        sweeper.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper


app = FastAPI(title="CoursePay Order & Payment API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://localhost:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(VerificationError)
async def verification_error_handler(request: Request, exc: VerificationError):
    # never tell a forger which check failed
    return JSONResponse(status_code=exc.status_code, content={"detail": "Invalid callback"})


@app.exception_handler(CoursePayError)
async def coursepay_error_handler(request: Request, exc: CoursePayError):
    if exc.status_code >= 500:
        logger.warning(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


app.include_router(orders.router, prefix="/orders", tags=["Orders"])
app.include_router(payments.router, prefix="/payments", tags=["Payments"])
app.include_router(admin.router, prefix="/admin", tags=["Admin Endpoints"])
app.include_router(secure_links.router, prefix="/secure-links", tags=["Secure Links"])
app.include_router(health.router, prefix="/health", tags=["Health"])


@app.get("/")
def root():
    return {"service": "coursepay", "status": "running"}
