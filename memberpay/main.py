import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import config
from .database import Base, engine, SessionLocal
from .models import (
    audit_log, donation, event, event_order, member_profile, payment, pending_payment,
    plan, promo_code, subscription, subscription_enhancement, user, webhook_event,
)
from .routes import admin_payments, admin_subscriptions, donations, event_orders, mock_payments, payments, plans, subscriptions
from .utils.db_init import create_default_admin, create_default_plans
from .utils.errors import PaymentError, PaymentErrorKind

logging.basicConfig(
    level=config["LOG_LEVEL"],
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create database tables
    Base.metadata.create_all(bind=engine)

    # Initialize default data
    db = SessionLocal()
    try:
        create_default_admin(db)
        create_default_plans(db)
    finally:
        db.close()
    yield


app = FastAPI(title="Memberpay API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config["CORS_ORIGINS"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    max_age=600,
)


@app.exception_handler(PaymentError)
async def payment_error_handler(request: Request, exc: PaymentError):
    body = {"success": False, "message": exc.message, "error": exc.kind.value}
    if exc.kind == PaymentErrorKind.ACTIVATION:
        # Details stay in the logs
        body["message"] = "Payment could not be completed. Please contact support."
        logger.error(
            "%s %s failed: %s %s [request_id=%s]",
            request.method, request.url.path, exc.message, exc.details, request.headers.get("x-request-id"),
        )
    elif exc.kind == PaymentErrorKind.INVALID_REQUEST and exc.details:
        body["errors"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(
        "Unhandled error on %s %s [request_id=%s]",
        request.method, request.url.path, request.headers.get("x-request-id"),
    )
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": "Internal server error", "error": "internal_error"},
    )


# Include routers
app.include_router(payments.router)
app.include_router(mock_payments.router)
app.include_router(subscriptions.router)
app.include_router(event_orders.router)
app.include_router(donations.router)
app.include_router(plans.router)
app.include_router(admin_payments.router)
app.include_router(admin_subscriptions.router)

@app.get("/")
def root():
    return {"message": "Memberpay API"}
