"""
FastAPI application serving the HR portal.
Provides REST API endpoints for sign-in, leave requests, balances and dashboards.
"""

import logging
import os
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Literal

import uvicorn
from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict, Field

from hr_portal.auth import AuthContext
from hr_portal.config import settings
from hr_portal.errors import (
    AuthenticationError,
    InvalidTransition,
    NotFoundError,
    StorageError,
    Unauthorized,
    ValidationError,
)
from hr_portal.models import LeaveBalance, LeaveRequest, LeaveStatus
from hr_portal.observability import configure_logging
from hr_portal.services import Services, get_services, reset_services
from hr_portal.validation import collect_validation_errors

configure_logging(settings.log_level)
logger = logging.getLogger(__name__)


# Pydantic models for API
class SignInRequest(BaseModel):
    """Request model for sign-in."""

    model_config = ConfigDict(
        json_schema_extra={"example": {"email": "john.doe@company.com", "password": "********"}}
    )

    email: str = Field(..., description="Account email")
    password: str = Field(..., description="Account password")


class UserResponse(BaseModel):
    id: str
    email: str
    name: str
    role: str


class SignInResponse(BaseModel):
    access_token: str
    token_type: str
    expires_at: datetime
    user: UserResponse


class LeaveRequestCreate(BaseModel):
    """
    Leave submission. Fields are checked by the leave validator, not here,
    so that every failure comes back attached to its field.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "leaveType": "annual",
                "startDate": "2024-06-10",
                "endDate": "2024-06-12",
                "reason": "Family event travel",
            }
        },
    )

    leave_type: str | None = Field(None, alias="leaveType")
    start_date: str | None = Field(None, alias="startDate")
    end_date: str | None = Field(None, alias="endDate")
    reason: str | None = None
    requester_id: str | None = Field(None, alias="requesterId")
    status: str | None = None


class LeaveRequestResponse(BaseModel):
    id: str
    requester_id: str
    leave_type: str
    start_date: date
    end_date: date
    reason: str
    status: str
    created_at: datetime
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    days: int
    balance_sync_pending: bool = False


class LeaveBalanceResponse(BaseModel):
    requester_id: str
    leave_type: str
    year: int
    total_days: float
    used_days: float
    remaining_days: float | None
    unlimited: bool


class PendingBalanceUpdateResponse(BaseModel):
    request_id: str
    requester_id: str
    leave_type: str
    year: int
    days: int
    last_error: str
    attempts: int
    queued_at: datetime


class BalanceSyncRetryResponse(BaseModel):
    applied: list[str]
    failed: list[str]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    environment: str
    store_circuit_breaker: dict


def _request_response(request: LeaveRequest, services: Services) -> LeaveRequestResponse:
    return LeaveRequestResponse(
        id=request.id,
        requester_id=request.requester_id,
        leave_type=request.leave_type.value,
        start_date=request.start_date,
        end_date=request.end_date,
        reason=request.reason,
        status=request.status.value,
        created_at=request.created_at,
        reviewed_by=request.reviewed_by,
        reviewed_at=request.reviewed_at,
        days=request.days,
        balance_sync_pending=services.reconciler.sync_queue.get(request.id) is not None,
    )


def _balance_response(balance: LeaveBalance) -> LeaveBalanceResponse:
    return LeaveBalanceResponse(
        requester_id=balance.requester_id,
        leave_type=balance.leave_type.value,
        year=balance.year,
        total_days=balance.total_days,
        used_days=balance.used_days,
        remaining_days=balance.remaining_days,
        unlimited=balance.unlimited,
    )


# Authentication dependency
bearer_scheme = HTTPBearer(auto_error=False)


def get_auth_context(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    services: Services = Depends(get_services),
) -> AuthContext:
    """Resolve the bearer token into the caller's AuthContext."""
    return services.identity.resolve(credentials.credentials if credentials else None)


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    logger.info("Starting HR Portal API")
    logger.info(f"Environment: {settings.environment}")

    get_services()

    yield

    logger.info("Shutting down HR Portal API")
    reset_services()


# Create FastAPI app
app = FastAPI(
    title="HR Portal API",
    description="Authentication, role-based dashboards and the leave request workflow",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error mapping. Handlers are matched on the exception's MRO, most specific first.


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(
        status_code=422,
        content={"detail": exc.message, "errors": [exc.to_dict()]},
    )


@app.exception_handler(AuthenticationError)
async def authentication_error_handler(request: Request, exc: AuthenticationError):
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"detail": "Authentication required"},
        headers={"WWW-Authenticate": "Bearer"},
    )


@app.exception_handler(Unauthorized)
async def unauthorized_handler(request: Request, exc: Unauthorized):
    logger.info(f"Access denied on {request.url.path}: {exc}")
    return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content={"detail": "Access denied"})


@app.exception_handler(InvalidTransition)
async def invalid_transition_handler(request: Request, exc: InvalidTransition):
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": str(exc), "current_status": exc.current_status},
    )


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND, content={"detail": "Leave request not found"}
    )


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    logger.error(f"Storage error on {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Temporary storage failure. Please try again."},
    )


# API Endpoints


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {"message": "HR Portal API", "version": "1.0.0", "docs": "/docs"}


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(services: Services = Depends(get_services)):
    """
    Health check endpoint.
    Returns service status and the store's circuit breaker state.
    """
    return HealthResponse(
        status="healthy",
        environment=settings.environment,
        store_circuit_breaker=services.store.get_circuit_breaker_state(),
    )


@app.get("/ready")
def ready():
    return {"status": "ready"}


@app.get("/metrics", tags=["Monitoring"])
def metrics(services: Services = Depends(get_services)):
    """
    Operational counters.

    Returns:
    - Store circuit breaker state
    - Active sessions
    - Approvals waiting for their balance update
    """
    return {
        "circuit_breaker": services.store.get_circuit_breaker_state(),
        "active_sessions": services.identity.active_session_count(),
        "pending_balance_updates": len(services.reconciler.sync_queue),
        "environment": settings.environment,
    }


@app.post("/auth/sign-in", response_model=SignInResponse, tags=["Auth"])
def sign_in(body: SignInRequest, services: Services = Depends(get_services)):
    """Authenticate and start a session. Returns a bearer token."""
    session = services.identity.sign_in(body.email, body.password)
    ctx = session.context
    return SignInResponse(
        access_token=session.access_token,
        token_type=session.token_type,
        expires_at=session.expires_at,
        user=UserResponse(id=ctx.user_id, email=ctx.email, name=ctx.name, role=ctx.role.value),
    )


@app.post("/auth/sign-out", tags=["Auth"])
def sign_out(
    auth: AuthContext = Depends(get_auth_context),
    services: Services = Depends(get_services),
):
    """End the current session. The token stops working immediately."""
    services.identity.sign_out(auth)
    return {"message": "Signed out"}


@app.get("/auth/me", response_model=UserResponse, tags=["Auth"])
def me(auth: AuthContext = Depends(get_auth_context)):
    return UserResponse(id=auth.user_id, email=auth.email, name=auth.name, role=auth.role.value)


@app.post(
    "/leave-requests",
    response_model=LeaveRequestResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Leave"],
)
def submit_leave_request(
    body: LeaveRequestCreate,
    auth: AuthContext = Depends(get_auth_context),
    services: Services = Depends(get_services),
):
    """
    Submit a leave request for the signed-in user.

    Every field failure is reported at once; nothing is stored unless the
    whole submission is valid.
    """
    payload = body.model_dump(exclude_none=True)
    reconciler = services.reconciler
    errors = collect_validation_errors(
        payload,
        reject_past_start_dates=reconciler.reject_past_start_dates,
        today=reconciler.clock().date(),
    )
    if errors:
        return JSONResponse(
            status_code=422,
            content={"detail": errors[0].message, "errors": [e.to_dict() for e in errors]},
        )

    request = services.reconciler.submit(auth, payload)
    return _request_response(request, services)


@app.get("/leave-requests", response_model=list[LeaveRequestResponse], tags=["Leave"])
def list_leave_requests(
    scope: Literal["mine", "all"] = Query("mine"),
    auth: AuthContext = Depends(get_auth_context),
    services: Services = Depends(get_services),
):
    """List leave requests, newest first. ``scope=all`` is for reviewers."""
    requests = services.queries.list_requests(auth, scope)
    return [_request_response(r, services) for r in requests]


@app.post(
    "/leave-requests/{request_id}/approve", response_model=LeaveRequestResponse, tags=["Leave"]
)
def approve_leave_request(
    request_id: str,
    auth: AuthContext = Depends(get_auth_context),
    services: Services = Depends(get_services),
):
    """
    Approve a pending request and charge the requester's balance.

    If the balance update fails the approval still stands and
    ``balance_sync_pending`` is true in the response.
    """
    request = services.reconciler.transition(auth, request_id, LeaveStatus.APPROVED)
    return _request_response(request, services)


@app.post(
    "/leave-requests/{request_id}/reject", response_model=LeaveRequestResponse, tags=["Leave"]
)
def reject_leave_request(
    request_id: str,
    auth: AuthContext = Depends(get_auth_context),
    services: Services = Depends(get_services),
):
    """Reject a pending request."""
    request = services.reconciler.transition(auth, request_id, LeaveStatus.REJECTED)
    return _request_response(request, services)


@app.get("/leave-balances", response_model=list[LeaveBalanceResponse], tags=["Leave"])
def list_leave_balances(
    year: int | None = None,
    requester_id: str | None = None,
    auth: AuthContext = Depends(get_auth_context),
    services: Services = Depends(get_services),
):
    """Balances for a requester (default: you) and year (default: this year)."""
    balances = services.queries.list_balances(auth, requester_id=requester_id, year=year)
    return [_balance_response(b) for b in balances]


@app.get("/dashboard", tags=["Dashboard"])
def dashboard(
    auth: AuthContext = Depends(get_auth_context),
    services: Services = Depends(get_services),
):
    """Role-based dashboard summary."""
    return services.queries.dashboard(auth)


@app.get(
    "/balance-sync", response_model=list[PendingBalanceUpdateResponse], tags=["Balance Sync"]
)
def list_pending_balance_updates(
    auth: AuthContext = Depends(get_auth_context),
    services: Services = Depends(get_services),
):
    """Approvals whose balance update is waiting for retry."""
    if not auth.is_reviewer:
        raise Unauthorized("Only reviewers can inspect balance sync")
    return [e.to_dict() for e in services.reconciler.pending_balance_updates()]


@app.post("/balance-sync/retry", response_model=BalanceSyncRetryResponse, tags=["Balance Sync"])
def retry_balance_updates(
    auth: AuthContext = Depends(get_auth_context),
    services: Services = Depends(get_services),
):
    """Retry every queued balance update once."""
    return services.reconciler.retry_balance_updates(auth)


if __name__ == "__main__":
    uvicorn.run(
        "hr_portal.main:app",
        host="0.0.0.0",
        port=int(os.environ.get("PORT", 8080)),
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )
