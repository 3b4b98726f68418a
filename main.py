import asyncio
import contextlib
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import exc as sa_exc
from contextlib import asynccontextmanager

from core.config import settings
from core.database import create_db_and_tables
from core.exceptions import (
    AccessDenied,
    AccountNotProvisioned,
    AlreadyExists,
    DuplicatePending,
    InvalidTransition,
    InvitationExpired,
    InvitationNotPending,
    LedgerlyError,
    MembershipConflict,
    NotFound,
    QuotaExceeded,
    TransientFailure,
    Unauthenticated,
)
from routes.admin import router as admin_router
from routes.budget import router as budget_router
from routes.invitation import router as invitation_router
from routes.organization import router as organization_router
from routes.users import router as users_router
from services.invitation_service import invitation_sweep_loop

logging.basicConfig(level=settings.LOG_LEVEL.upper())
logger = logging.getLogger(__name__)


# =========================================
# 🏁 Lifespan (DB initialization + invitation sweeper)
# =========================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    create_db_and_tables()
    logger.info("✅ Database tables created on startup.")

    sweeper = None
    if settings.INVITATION_SWEEP_INTERVAL_SECONDS > 0:
        sweeper = asyncio.create_task(invitation_sweep_loop(settings.INVITATION_SWEEP_INTERVAL_SECONDS))
    yield

    if sweeper is not None:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper
    logger.info("✅ Application shutting down.")

# =========================================
#  ✅ FastAPI App
# =========================================
app = FastAPI(lifespan=lifespan, title="Ledgerly Tenancy Backend")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =========================================
# 🚦 Error translation
# =========================================
ERROR_STATUS_CODES = {
    Unauthenticated: 401,
    AccountNotProvisioned: 403,
    AccessDenied: 403,
    QuotaExceeded: 403,
    NotFound: 404,
    DuplicatePending: 409,
    MembershipConflict: 409,
    AlreadyExists: 409,
    InvitationNotPending: 409,
    InvalidTransition: 409,
    InvitationExpired: 410,
    TransientFailure: 503,
}


def status_code_for(exc: LedgerlyError) -> int:
    for error_cls in type(exc).__mro__:
        if error_cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[error_cls]
    return 400


@app.exception_handler(LedgerlyError)
async def ledgerly_error_handler(request: Request, exc: LedgerlyError):
    body = {"error": exc.code, "detail": exc.message}
    if isinstance(exc, AccountNotProvisioned):
        # Signed in upstream but never synced: the client finishes setup first
        body["redirect"] = "/setup"
    if isinstance(exc, QuotaExceeded):
        body.update(exc.context)
    return JSONResponse(status_code=status_code_for(exc), content=body)


@app.exception_handler(sa_exc.OperationalError)
@app.exception_handler(sa_exc.TimeoutError)
async def store_error_handler(request: Request, exc: Exception):
    # Lazy loads after a commit run outside any transaction block
    logger.warning("Store error outside a transaction: %s", exc)
    return await ledgerly_error_handler(
        request, TransientFailure("The store could not complete the request. Please retry.")
    )


# =========================================
# 📦 Routers
# =========================================
app.include_router(users_router, prefix="/users", tags=["Users"])
app.include_router(invitation_router, prefix="/invitations", tags=["Invitations"])
app.include_router(organization_router)
app.include_router(admin_router)
app.include_router(budget_router)


# =========================================
# 🩺 Health Check
# =========================================
@app.get("/health")
def health_check():
    return {"status": "ok", "message": "Backend is running"}
