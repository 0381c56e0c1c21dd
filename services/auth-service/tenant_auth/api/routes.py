"""HTTP route definitions for the auth service."""

from __future__ import annotations

import hashlib
import logging

import redis
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from platform_schemas import AccountSummary, TenantMembershipSummary
from pydantic import BaseModel, EmailStr, Field

from ..config import get_settings
from ..domain.account import Account, PlatformRole, TenantRole
from ..domain.claims import Claims, MembershipClaims, TenantScopedClaims
from ..domain.contracts import ProvisionAccountInput
from ..domain.results import AccountLocked, AuthError, LoginResult, TokenInvalid, WeakPassword
from ..domain.service import AuthService
from ..security.authorization import (
    PlatformAdminOrAbove,
    PlatformSuperAdmin,
    Scope,
    TenantAccess,
)
from ..security.rate_limiter import RateLimiter, SlidingWindowRateLimiter
from ..security.redis_rate_limiter import RedisSlidingWindowRateLimiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1")

bearer_scheme = HTTPBearer(auto_error=False)

RESET_REQUEST_ACKNOWLEDGEMENT = (
    "Your password reset request has been submitted. An administrator will contact you shortly."
)

_STATUS_BY_CODE: dict[str, int] = {
    "INVALID_CREDENTIALS": status.HTTP_401_UNAUTHORIZED,
    "ACCOUNT_LOCKED": status.HTTP_423_LOCKED,
    "ACCOUNT_INACTIVE": status.HTTP_403_FORBIDDEN,
    "ACCOUNT_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "TENANT_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "TOKEN_INVALID": status.HTTP_401_UNAUTHORIZED,
    "TOKEN_EXPIRED": status.HTTP_401_UNAUTHORIZED,
    "INSUFFICIENT_ROLE": status.HTTP_403_FORBIDDEN,
    "MUST_CHANGE_PASSWORD": status.HTTP_403_FORBIDDEN,
    "WEAK_PASSWORD": 422,
    "PASSWORD_UNCHANGED": 422,
    "INVALID_CURRENT_PASSWORD": status.HTTP_400_BAD_REQUEST,
    "EMAIL_ALREADY_REGISTERED": status.HTTP_409_CONFLICT,
    "STALE_ACCOUNT_STATE": status.HTTP_409_CONFLICT,
}


class LoginRequest(BaseModel):
    """Credentials posted to a login endpoint."""

    email: EmailStr
    password: str = Field(..., min_length=1)
    tenant_slug: str | None = None


class TokenResponse(BaseModel):
    """Token issuance response containing the bearer token and metadata."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    refresh_token: str
    refresh_expires_in: int


class LoginResponse(TokenResponse):
    account_id: str
    email: str
    platform_role: str
    must_change_password: bool
    tenant_id: str | None = None
    tenant_role: str | None = None

    @classmethod
    def from_result(cls, result: LoginResult) -> "LoginResponse":
        return cls(
            access_token=result.tokens.access_token,
            expires_in=result.tokens.access_expires_in,
            refresh_token=result.tokens.refresh_token,
            refresh_expires_in=result.tokens.refresh_expires_in,
            account_id=result.account_id,
            email=result.email,
            platform_role=result.platform_role.value,
            must_change_password=result.must_change_password,
            tenant_id=result.tenant_id,
            tenant_role=result.tenant_role.value if result.tenant_role else None,
        )


class RefreshTokenRequest(BaseModel):
    """Request body for exchanging refresh tokens for new access credentials."""

    refresh_token: str


class RefreshResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


class ForgotPasswordRequest(BaseModel):
    email: EmailStr
    tenant_slug: str = Field(..., min_length=1)
    message: str | None = Field(default=None, max_length=1000)


class ForgotPasswordResponse(BaseModel):
    message: str = RESET_REQUEST_ACKNOWLEDGEMENT
    tenant_slug: str


class SessionResponse(BaseModel):
    """What the presented access token says about its bearer."""

    account_id: str
    email: str
    platform_role: str
    must_change_password: bool
    tenant_id: str | None = None
    tenant_role: str | None = None
    memberships: list[TenantMembershipSummary] = Field(default_factory=list)

    @classmethod
    def from_claims(cls, claims: Claims) -> "SessionResponse":
        scoped: dict[str, object] = {}
        if isinstance(claims, TenantScopedClaims):
            scoped["tenant_id"] = claims.tenant_id
            scoped["tenant_role"] = claims.tenant_role.value if claims.tenant_role else None
        elif isinstance(claims, MembershipClaims):
            scoped["memberships"] = [
                TenantMembershipSummary(tenant_id=entry.tenant_id, role=entry.role.value)
                for entry in claims.memberships
            ]
        return cls(
            account_id=claims.subject,
            email=claims.email,
            platform_role=claims.platform_role.value,
            must_change_password=claims.must_change_password,
            **scoped,
        )


class ProvisionAccountRequest(BaseModel):
    """Payload accepted when an administrator creates an account."""

    email: EmailStr
    platform_role: PlatformRole = PlatformRole.USER
    tenant_id: str | None = None
    tenant_role: TenantRole | None = None
    password: str | None = None
    verified: bool = False


class ProvisionAccountResponse(BaseModel):
    account: AccountSummary
    # present only when the service generated the password
    temporary_password: str | None = None


class ForcedResetResponse(BaseModel):
    account_id: str
    temporary_password: str | None = None


class MembershipRequest(BaseModel):
    role: TenantRole


settings = get_settings()


def _build_rate_limiter() -> RateLimiter:
    """Instantiate the configured rate limiter backend, preferring Redis when available."""
    if settings.rate_limit_backend == "redis" and settings.redis_url:
        try:
            client = redis.from_url(settings.redis_url)
            # ensure connectivity early to fail fast and fall back
            client.ping()
            logger.info("rate limiter configured for redis backend at %s", settings.redis_url)
            return RedisSlidingWindowRateLimiter(
                client,
                max_requests=settings.rate_limit_requests,
                window_seconds=settings.rate_limit_window_seconds,
            )
        except (redis.RedisError, ValueError) as exc:
            logger.warning("redis rate limiter unavailable, falling back to in-memory: %s", exc)

    logger.info("rate limiter using in-memory backend")
    return SlidingWindowRateLimiter(
        max_requests=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )


rate_limiter = _build_rate_limiter()


def get_service(request: Request) -> AuthService:
    """Resolve the `AuthService` stored on the FastAPI application state."""
    service: AuthService = request.app.state.auth_service
    return service


def get_claims(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    service: AuthService = Depends(get_service),
) -> Claims:
    """Verify the bearer token of the current request."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise _http_error(service, TokenInvalid(message="Missing bearer token"))
    claims = service.verify_request(credentials.credentials)
    if isinstance(claims, AuthError):
        raise _http_error(service, claims)
    return claims


def _http_error(service: AuthService, error: AuthError) -> HTTPException:
    status_code = _STATUS_BY_CODE.get(error.code, status.HTTP_400_BAD_REQUEST)
    detail: dict[str, object] = {"code": error.code, "message": error.message}
    headers: dict[str, str] = {}
    if isinstance(error, WeakPassword):
        detail["violations"] = list(error.violations)
    if isinstance(error, AccountLocked):
        headers["Retry-After"] = str(error.retry_after_seconds(service.clock()))
    if status_code == status.HTTP_401_UNAUTHORIZED:
        headers["WWW-Authenticate"] = "Bearer"
    return HTTPException(status_code=status_code, detail=detail, headers=headers or None)


def _throttle(key: str) -> None:
    if not rate_limiter.allow(key):
        retry_after = rate_limiter.retry_after(key)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="rate limited",
            headers={"Retry-After": str(max(retry_after, 1))},
        )


def _require(service: AuthService, claims: Claims, *scopes: Scope) -> None:
    """Admit the caller when any one of ``scopes`` is satisfied."""
    decision = None
    for scope in scopes:
        decision = service.authorize(claims, scope)
        if decision:
            return
    if decision is not None and decision.error is not None:
        raise _http_error(service, decision.error)
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden")


def _summary(account: Account, tenant_id: str | None = None, tenant_role: TenantRole | None = None) -> AccountSummary:
    memberships = []
    if tenant_id and tenant_role:
        memberships.append(TenantMembershipSummary(tenant_id=tenant_id, role=tenant_role.value))
    return AccountSummary(
        account_id=account.account_id,
        email=account.email,
        platform_role=account.platform_role.value,
        active=account.active,
        must_change_password=account.must_change_password,
        last_login_at=account.last_login_at,
        created_at=account.created_at,
        memberships=memberships,
    )


def _login(
    payload: LoginRequest,
    service: AuthService,
    *,
    tenant_slug: str | None,
    required_role: PlatformRole | None,
) -> LoginResponse:
    rate_key = f"login:{payload.email.lower()}"
    _throttle(rate_key)
    result = service.login(
        payload.email,
        payload.password,
        tenant_slug,
        required_role=required_role,
    )
    if isinstance(result, AuthError):
        raise _http_error(service, result)
    rate_limiter.reset(rate_key)
    return LoginResponse.from_result(result)


@router.post("/auth/login", response_model=LoginResponse)
def login(payload: LoginRequest, service: AuthService = Depends(get_service)) -> LoginResponse:
    """Sign in to a tenant portal (with ``tenant_slug``) or without tenant scope."""
    return _login(payload, service, tenant_slug=payload.tenant_slug, required_role=None)


@router.post("/platform/auth/login", response_model=LoginResponse)
def platform_login(payload: LoginRequest, service: AuthService = Depends(get_service)) -> LoginResponse:
    """Sign in to the platform admin portal; only platform admins are admitted."""
    return _login(payload, service, tenant_slug=None, required_role=PlatformRole.ADMIN)


@router.post("/auth/refresh", response_model=RefreshResponse)
def refresh_session(
    payload: RefreshTokenRequest,
    service: AuthService = Depends(get_service),
) -> RefreshResponse:
    token_hash = hashlib.sha256(payload.refresh_token.encode("utf-8")).hexdigest()[:12]
    _throttle(f"token-refresh:{token_hash}")
    result = service.refresh_session(payload.refresh_token)
    if isinstance(result, AuthError):
        raise _http_error(service, result)
    return RefreshResponse(access_token=result.access_token, expires_in=result.access_expires_in)


@router.post("/auth/change-password", response_model=TokenResponse)
def change_password(
    payload: ChangePasswordRequest,
    claims: Claims = Depends(get_claims),
    service: AuthService = Depends(get_service),
) -> TokenResponse:
    """Change the caller's password; allowed even for a restricted session."""
    _throttle(f"change-password:{claims.subject}")
    result = service.change_password(claims, payload.current_password, payload.new_password)
    if isinstance(result, AuthError):
        raise _http_error(service, result)
    tokens = result.tokens
    return TokenResponse(
        access_token=tokens.access_token,
        expires_in=tokens.access_expires_in,
        refresh_token=tokens.refresh_token,
        refresh_expires_in=tokens.refresh_expires_in,
    )


@router.post(
    "/auth/forgot-password",
    response_model=ForgotPasswordResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def forgot_password(
    payload: ForgotPasswordRequest,
    service: AuthService = Depends(get_service),
) -> ForgotPasswordResponse:
    """Ask tenant administrators for a reset; the reply never reveals membership."""
    _throttle(f"forgot-password:{payload.email.lower()}")
    result = service.request_password_reset(payload.email, payload.tenant_slug, payload.message)
    if isinstance(result, AuthError):
        raise _http_error(service, result)
    return ForgotPasswordResponse(tenant_slug=result.tenant_slug)


@router.get("/auth/session", response_model=SessionResponse)
def current_session(claims: Claims = Depends(get_claims)) -> SessionResponse:
    return SessionResponse.from_claims(claims)


@router.post("/accounts", response_model=ProvisionAccountResponse, status_code=status.HTTP_201_CREATED)
def provision_account(
    payload: ProvisionAccountRequest,
    claims: Claims = Depends(get_claims),
    service: AuthService = Depends(get_service),
) -> ProvisionAccountResponse:
    """Create an account; tenant admins may provision staff into their own tenant."""
    if payload.platform_role is not PlatformRole.USER:
        _require(service, claims, PlatformSuperAdmin())
    elif payload.tenant_id:
        _require(
            service,
            claims,
            PlatformAdminOrAbove(),
            TenantAccess(payload.tenant_id, minimum_role=TenantRole.ADMIN),
        )
    else:
        _require(service, claims, PlatformAdminOrAbove())

    result = service.provision_account(
        ProvisionAccountInput(
            email=payload.email,
            platform_role=payload.platform_role,
            tenant_id=payload.tenant_id,
            tenant_role=payload.tenant_role,
            password=payload.password,
            verified=payload.verified,
            actor=claims.subject,
        )
    )
    if isinstance(result, AuthError):
        raise _http_error(service, result)
    return ProvisionAccountResponse(
        account=_summary(result.account, result.tenant_id, result.tenant_role),
        temporary_password=result.temporary_password,
    )


@router.post("/accounts/{account_id}/force-password-reset", response_model=ForcedResetResponse)
def force_password_reset(
    account_id: str,
    claims: Claims = Depends(get_claims),
    service: AuthService = Depends(get_service),
) -> ForcedResetResponse:
    _require(service, claims, PlatformAdminOrAbove())
    result = service.force_password_reset(account_id, actor=claims.subject)
    if isinstance(result, AuthError):
        raise _http_error(service, result)
    return ForcedResetResponse(account_id=result.account_id, temporary_password=result.temporary_password)


@router.post("/accounts/{account_id}/deactivate", response_model=AccountSummary)
def deactivate_account(
    account_id: str,
    claims: Claims = Depends(get_claims),
    service: AuthService = Depends(get_service),
) -> AccountSummary:
    _require(service, claims, PlatformAdminOrAbove())
    result = service.deactivate_account(account_id, actor=claims.subject)
    if isinstance(result, AuthError):
        raise _http_error(service, result)
    return _summary(result)


@router.put("/tenants/{tenant_id}/members/{account_id}", response_model=TenantMembershipSummary)
def grant_membership(
    tenant_id: str,
    account_id: str,
    payload: MembershipRequest,
    claims: Claims = Depends(get_claims),
    service: AuthService = Depends(get_service),
) -> TenantMembershipSummary:
    _require(service, claims, TenantAccess(tenant_id, minimum_role=TenantRole.ADMIN))
    result = service.grant_membership(account_id, tenant_id, payload.role, actor=claims.subject)
    if isinstance(result, AuthError):
        raise _http_error(service, result)
    return TenantMembershipSummary(tenant_id=result.tenant_id, role=result.role.value)


@router.delete("/tenants/{tenant_id}/members/{account_id}", status_code=status.HTTP_204_NO_CONTENT)
def revoke_membership(
    tenant_id: str,
    account_id: str,
    claims: Claims = Depends(get_claims),
    service: AuthService = Depends(get_service),
) -> Response:
    _require(service, claims, TenantAccess(tenant_id, minimum_role=TenantRole.ADMIN))
    if not service.revoke_membership(account_id, tenant_id, actor=claims.subject):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="membership not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
