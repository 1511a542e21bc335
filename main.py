import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlmodel import Session

from core.config import settings
from core.database import create_db_and_tables, engine
from core.exceptions import BillingError
from routes.billing import router as billing_router
from routes.cron import router as cron_router
from routes.webhooks import router as webhooks_router
from services.plan_catalog import create_default_plans
from services.scheduler import start_billing_scheduler, stop_billing_scheduler

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# =========================================
# 🏁 Lifespan (DB initialization + daily jobs)
# =========================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    create_db_and_tables()
    logger.info("✅ Database tables created on startup.")

    if settings.SEED_DEFAULT_PLANS:
        with Session(engine) as session:
            create_default_plans(session)

    scheduler = start_billing_scheduler()
    yield
    stop_billing_scheduler(scheduler)
    logger.info("✅ Application shutting down.")


# =========================================
#  ✅ FastAPI App
# =========================================
app = FastAPI(
    lifespan=lifespan,
    title="TaskMaster Billing Backend",
    docs_url=None if settings.IS_PRODUCTION else "/docs",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =========================================
# ❌ Billing errors -> JSON
# =========================================
@app.exception_handler(BillingError)
async def billing_error_handler(request: Request, exc: BillingError):
    if exc.status_code >= 500:
        logger.error(f"❌ {request.method} {request.url.path}: {exc.message}")
    else:
        logger.warning(f"⚠️ {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# =========================================
# 📦 Routers
# =========================================
app.include_router(billing_router)
app.include_router(webhooks_router)
app.include_router(cron_router)


# =========================================
# 🩺 Health Check
# =========================================
@app.get("/health")
def health_check():
    return {
        "status": "ok",
        "message": "Backend is running",
        "environment": settings.ENVIRONMENT,
        "stripe_configured": settings.STRIPE_CONFIGURED,
    }
