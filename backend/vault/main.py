import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from vault.config import settings
from vault.database import AsyncSessionLocal
from vault.errors import AppError, ChainError
from vault.routers import webhooks, cron, admin
from vault.routers import vault as vault_routes
from vault.services.chain_client import PolygonChainClient
from vault.services.withdrawal_processor import process_pending_withdrawals

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


async def scheduled_withdrawal_run():
    chain = PolygonChainClient()
    try:
        async with AsyncSessionLocal() as db:
            report = await process_pending_withdrawals(
                db, chain, budget_seconds=settings.WITHDRAWAL_RUN_BUDGET_SECONDS,
            )
        if report.total:
            logger.info("[withdraw] Scheduled run: %s", report.to_dict()["counts"])
    except ChainError as e:
        logger.error("[withdraw] Scheduled run aborted: %s", e.message)
    finally:
        await chain.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.WITHDRAWAL_SCHEDULE_MINUTES > 0:
        # One run at a time in this process; overlapping cron calls rely on the row claim
        scheduler.add_job(
            scheduled_withdrawal_run, "interval",
            minutes=settings.WITHDRAWAL_SCHEDULE_MINUTES,
            max_instances=1, coalesce=True,
        )
        scheduler.start()
    yield
    if scheduler.running:
        scheduler.shutdown()

app = FastAPI(title="USDC Vault API", lifespan=lifespan)

_allowed_origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()] or ["http://localhost:3000"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse({"error": exc.message}, status_code=exc.http_status)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=getattr(exc, "headers", None))


app.include_router(webhooks.router)
app.include_router(cron.router)
app.include_router(vault_routes.router)
app.include_router(admin.router)

@app.get("/health")
async def health():
    return {"status": "ok"}
