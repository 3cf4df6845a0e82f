"""
Authentication and tenant context for the Backoffice API

Validates the bearer JWT issued by the managed backend's auth service,
resolves the caller's current tenant and role, and protects the scheduled
job endpoints with the X-Cron-Key header.
"""
import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from pydantic import BaseModel

from backoffice.core.config import settings
from backoffice.repositories.tenant_repository import TenantRepository

logger = logging.getLogger(__name__)

# Security scheme for bearer tokens
security = HTTPBearer(auto_error=False)


class TokenUser(BaseModel):
    """User data extracted from JWT token"""
    id: str
    email: Optional[str] = None
    role: str = "authenticated"


class TenantContext(BaseModel):
    """Caller identity resolved against profiles / user_roles"""
    user_id: str
    tenant_id: str
    role: str


class AuthConfig:
    """Authentication configuration"""

    @staticmethod
    def get_jwt_secret() -> str:
        secret = settings.SUPABASE_JWT_SECRET
        if not secret:
            raise ValueError("SUPABASE_JWT_SECRET environment variable is not set")
        return secret

    @staticmethod
    def get_jwt_algorithm() -> str:
        return "HS256"


def decode_access_token(token: str) -> dict:
    """
    Decode and validate an access token.

    Payload of interest:
    {
        "sub": "user uuid",
        "email": "owner@loja.com.br",
        "aud": "authenticated",
        "role": "authenticated",
        "exp": 1234567890
    }
    """
    try:
        return jwt.decode(
            token,
            AuthConfig.get_jwt_secret(),
            algorithms=[AuthConfig.get_jwt_algorithm()],
            audience="authenticated"
        )
    except JWTError as e:
        error_msg = str(e).lower()
        if "expired" in error_msg:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token has expired",
                headers={"WWW-Authenticate": "Bearer"}
            )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"}
        )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> TokenUser:
    """
    Dependency that extracts and validates the current user from JWT.

    Usage:
        @router.get("/protected")
        async def protected_route(user: TokenUser = Depends(get_current_user)):
            ...
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"}
        )

    payload = decode_access_token(credentials.credentials)

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload: missing user id",
            headers={"WWW-Authenticate": "Bearer"}
        )

    return TokenUser(
        id=user_id,
        email=payload.get("email"),
        role=payload.get("role", "authenticated")
    )


async def get_tenant_context(user: TokenUser = Depends(get_current_user)) -> TenantContext:
    """
    Resolve the tenant the caller is currently working on.

    The tenant comes from profiles.current_tenant_id and the role from
    user_roles for that (user, tenant) pair.
    """
    repo = TenantRepository()

    tenant_id = repo.get_current_tenant_id(user.id)
    if not tenant_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "Nenhuma loja selecionada", "code": "NO_TENANT"}
        )

    role = repo.get_user_role(user.id, tenant_id)
    if not role:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": "Acesso negado a esta loja", "code": "ACCESS_DENIED"}
        )

    return TenantContext(user_id=user.id, tenant_id=str(tenant_id), role=role)


def require_tenant_role(*roles: str):
    """
    Dependency factory for role-based access control inside a tenant.

    Usage:
        @router.post("/charges")
        async def create_charge(ctx: TenantContext = Depends(require_tenant_role("owner", "admin"))):
            ...
    """
    async def role_checker(
        ctx: TenantContext = Depends(get_tenant_context)
    ) -> TenantContext:
        if ctx.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {', '.join(roles)}, your role: {ctx.role}"
            )
        return ctx

    return role_checker


# ============================================================================
# Scheduled jobs - API Key Verification
# ============================================================================

async def verify_cron_key(x_cron_key: str = Header(None, alias="X-Cron-Key")):
    """
    Verify the cron API key from X-Cron-Key header.

    If CRON_API_KEY is not configured, allows all requests (local development).
    If configured, requires matching key.
    """
    if not settings.CRON_API_KEY:
        logger.warning("CRON_API_KEY not configured - job endpoints are unprotected!")
        return

    if not x_cron_key:
        logger.warning("Job request without X-Cron-Key header")
        raise HTTPException(
            status_code=401,
            detail="Missing X-Cron-Key header. Authentication required."
        )

    if x_cron_key != settings.CRON_API_KEY:
        logger.warning("Invalid cron key attempt")
        raise HTTPException(status_code=401, detail="Invalid API key")
