# custody/core/security.py
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
import logging

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from custody.core.config import ACCESS_TOKEN_EXPIRE_MINUTES, ALGORITHM, ROLE_TIERS, SECRET_KEY
from custody.core.permissions import Actor, tier_for_role

logger = logging.getLogger(__name__)

# Token diterbitkan oleh identity provider eksternal; di sini hanya diverifikasi
bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Mint a token. Used by the dev token script and by tests, never by an endpoint."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    """Raises JWTError when the signature, expiry or subject is invalid."""
    payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    if not payload.get("sub"):
        raise JWTError("Subject ('sub') missing in token payload.")
    return payload


def actor_from_claims(claims: Dict[str, Any]) -> Actor:
    tier = tier_for_role(claims.get("role"), ROLE_TIERS)
    if tier is None:
        logger.warning(f"Token for '{claims.get('sub')}' carries unmapped role {claims.get('role')!r}.")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Role is not permitted to use this service.",
        )
    return Actor(actor_id=str(claims["sub"]), tier=tier, display_name=claims.get("name"))


async def get_current_actor(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Actor:
    """
    Resolve the calling actor from the claims the auth middleware stored on
    the request, decoding the bearer token again when the middleware did not run.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    claims: Optional[Dict[str, Any]] = getattr(request.state, "token_claims", None)
    if claims is None:
        if credentials is None:
            raise credentials_exception
        try:
            claims = decode_token(credentials.credentials)
        except JWTError:
            logger.warning("Token decode failed in get_current_actor dependency.")
            raise credentials_exception
    return actor_from_claims(claims)

