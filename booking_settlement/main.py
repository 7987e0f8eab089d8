# booking_settlement/main.py

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from booking_settlement.config import ALLOWED_ORIGINS
from booking_settlement.logging_config import setup_logging
from booking_settlement.middleware import RequestIDMiddleware
from booking_settlement.routes.distribution import router as distribution_router
from booking_settlement.routes.health import router as health_router
from booking_settlement.routes.metrics import router as metrics_router
from booking_settlement.routes.payments import router as payments_router
from booking_settlement.routes.reservations import router as reservations_router

# Initialize structured logging
setup_logging()
logger = structlog.get_logger(__name__)

app = FastAPI(
    title="Booking Settlement API",
    description="Reservation availability, payment reconciliation and wallet distribution",
    version="1.0.0",
)

app.add_middleware(RequestIDMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(health_router, tags=["Health"])
app.include_router(metrics_router, tags=["Metrics"])
app.include_router(reservations_router, tags=["Reservations"])
app.include_router(payments_router, tags=["Payments"])
app.include_router(distribution_router, tags=["Distribution"])

logger.info("app_initialized", routes=len(app.routes))
