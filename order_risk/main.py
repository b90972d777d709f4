"""FastAPI application entry point for the order risk engine."""

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from order_risk.api.dependencies import build_memory_engine, build_sql_engine
from order_risk.api.middleware.error_handler import global_exception_handler
from order_risk.api.middleware.logging import StructuredLoggingMiddleware
from order_risk.api.routes.fraud import router as fraud_router
from order_risk.api.routes.health import router as health_router
from order_risk.config import settings
from order_risk.domains.fraud.config import FraudConfig
from order_risk.domains.fraud.notifications import KafkaAlertSink
from order_risk.domains.fraud.stores import LoggingAlertSink
from order_risk.shared.kafka_utils import create_producer, stop_producer
from order_risk.shared.logging import setup_logging

logger = structlog.get_logger()

# Track app start time for uptime calculation
APP_START_TIME: float = 0.0


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown logic."""
    global APP_START_TIME
    APP_START_TIME = time.time()
    setup_logging(settings.log_level)

    logger.info(
        "order_risk_starting",
        app_name=settings.app_name,
        version=settings.app_version,
        storage_backend=settings.storage_backend,
    )

    config = FraudConfig.from_env()

    producer = None
    notifier = LoggingAlertSink()
    if settings.alert_notifications_enabled:
        try:
            producer = await create_producer(settings.kafka_bootstrap_servers)
            notifier = KafkaAlertSink(producer, topic=settings.alert_topic)
        except Exception:
            logger.warning("kafka_producer_failed_to_start", exc_info=True)
    app.state.kafka_producer = producer

    if settings.storage_backend == "sql":
        from order_risk.db.database import async_session_factory, init_db

        await init_db()
        app.state.fraud_engine = build_sql_engine(
            async_session_factory, config=config, notifier=notifier
        )
    else:
        app.state.fraud_engine = build_memory_engine(config=config, notifier=notifier)

    yield

    await app.state.fraud_engine.alerts.drain(timeout=settings.shutdown_drain_seconds)
    await stop_producer(producer)
    logger.info("order_risk_shutting_down")


app = FastAPI(
    title="Order Risk Engine",
    description="Real-time fraud-risk scoring for e-commerce orders",
    version=settings.app_version,
    lifespan=lifespan,
)

# CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Structured logging middleware
app.add_middleware(StructuredLoggingMiddleware)

# Expected errors are handled inside the exception middleware; the Exception
# entry covers everything else at the server-error layer
for exc_class in (ValueError, PermissionError, LookupError, Exception):
    app.add_exception_handler(exc_class, global_exception_handler)

# Register routers
app.include_router(health_router)
app.include_router(fraud_router)


def get_uptime() -> int:
    """Get application uptime in seconds."""
    if APP_START_TIME == 0.0:
        return 0
    return int(time.time() - APP_START_TIME)
