import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from billing_sync.core import config
from billing_sync.core.logging_config import setup_logging, sanitize_log_data

# ✅ Import All API Routes
from billing_sync.api.routes import billing_webhook, subscription, health

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(config.LOG_LEVEL)
    logger.info(
        "Starting billing sync with config: %s",
        sanitize_log_data({
            "database_url": config.DATABASE_URL,
            "stripe_secret_key": config.STRIPE_SECRET_KEY,
            "stripe_webhook_secret": config.STRIPE_WEBHOOK_SECRET,
            "stripe_price_id_monthly": config.STRIPE_PRICE_ID_MONTHLY,
            "stripe_price_id_yearly": config.STRIPE_PRICE_ID_YEARLY,
            "billing_currency": config.BILLING_CURRENCY,
        }),
    )

    if config.RUN_MIGRATIONS == "1":
        from billing_sync.db.migrate import run_migrations
        run_migrations()

    yield


# ============================================
# ✅ FASTAPI APP INIT
# ============================================

app = FastAPI(title="Billing Sync", lifespan=lifespan)


# ============================================
# ✅ REGISTER ALL ROUTERS
# ============================================

app.include_router(billing_webhook.router)
app.include_router(subscription.router)
app.include_router(health.router)


@app.get("/")
def root():
    return {"status": "Billing sync running"}
