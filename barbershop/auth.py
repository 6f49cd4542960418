import logging
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError
from jose import jwt as jose_jwt
from sqlalchemy.orm import Session

from .config import JWT_ALGORITHM, SUPABASE_JWT_AUDIENCE, SUPABASE_JWT_SECRET
from .database import get_db
from .models import Profile

logger = logging.getLogger(__name__)

security = HTTPBearer()

ADMIN_ROLES = {"admin", "super_admin"}


def verify_access_token(token: str) -> dict:
    """Verify an HS256 access token issued by the auth provider and return its claims"""
    try:
        payload = jose_jwt.decode(
            token,
            SUPABASE_JWT_SECRET,
            algorithms=[JWT_ALGORITHM],
            audience=SUPABASE_JWT_AUDIENCE,
        )
    except ExpiredSignatureError as e:
        raise HTTPException(
            status_code=401,
            detail="Token has expired. Please refresh your session.",
            headers={"X-Token-Expired": "true"},
        ) from e
    except JWTError as e:
        logger.warning(f"⚠️ Token verification failed: {e}")
        raise HTTPException(status_code=401, detail="Token verification failed") from e

    if not payload.get("sub"):
        logger.error(f"❌ Token missing user ID claim. Available claims: {list(payload.keys())}")
        raise HTTPException(status_code=401, detail="Invalid token claims")
    return payload


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> Profile:
    """Resolve the staff profile behind the Bearer token"""
    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated. Please provide a valid Bearer token in the Authorization header.",
        )

    token = credentials.credentials
    if len(token.split(".")) != 3:
        logger.warning(f"⚠️ Malformed token received, token length: {len(token)}")
        raise HTTPException(status_code=401, detail="Invalid token format. Expected a valid JWT token.")

    claims = verify_access_token(token)

    profile = db.query(Profile).filter(Profile.auth_user_id == claims["sub"]).first()
    if not profile or not profile.is_active:
        logger.warning(f"⚠️ No active profile for auth user {claims['sub']}")
        raise HTTPException(status_code=403, detail="Profile not found or inactive")

    logger.debug(f"✅ User authenticated: {profile.email} (barbershop {profile.barbershop_id})")
    return profile


def ensure_barbershop_access(user: Profile, barbershop_id: Optional[int]) -> int:
    """Return the barbershop the request acts on; only super admins may act on another tenant"""
    if barbershop_id is None or barbershop_id == user.barbershop_id:
        if user.barbershop_id is None:
            raise HTTPException(status_code=400, detail="barbershopId is required")
        return user.barbershop_id
    if user.role == "super_admin":
        return barbershop_id
    logger.warning(f"🚫 User {user.id} tried to access barbershop {barbershop_id}")
    raise HTTPException(status_code=403, detail="Access to this barbershop is not allowed")


async def get_current_admin(user: Profile = Depends(get_current_user)) -> Profile:
    """Current user, restricted to barbershop admins"""
    if user.role not in ADMIN_ROLES:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


async def get_current_super_admin(user: Profile = Depends(get_current_user)) -> Profile:
    """Current user, restricted to platform operators (jobs that touch every tenant)"""
    if user.role != "super_admin":
        raise HTTPException(status_code=403, detail="Super admin access required")
    return user
