# agrimarket/fastapi/auth.py
# Bearer-JWT identity shared by every router.
# Tokens are issued by the platform auth service; this service only verifies them.

from typing import Any, Dict

import jwt
from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from agrimarket.services.access.policy import Actor

# --- one HTTPBearer scheme for all routers (docs will show a lock) ---
bearer = HTTPBearer(scheme_name="AccessToken", bearerFormat="JWT", auto_error=False)


def _jwt_decode(token: str, secret: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, secret, algorithms=["HS256"], options={"verify_sub": False})
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


def auth_identity(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Security(bearer),
) -> Dict[str, Any]:
    if not credentials or (credentials.scheme or "").lower() != "bearer":
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header")

    payload = _jwt_decode(credentials.credentials.strip(), request.app.state.config.jwt_secret_key)
    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Not an access token")

    # identity lives in 'user'; fall back to a bare string 'sub'
    identity = payload.get("user")
    if not identity and isinstance(payload.get("sub"), str):
        identity = {"userId": payload["sub"]}

    if not isinstance(identity, dict) or not identity:
        raise HTTPException(status_code=401, detail="Invalid token payload")
    return identity


def current_actor(identity: Dict[str, Any] = Depends(auth_identity)) -> Actor:
    """Roles are read from the token once per request and never re-queried."""
    actor = Actor.from_identity(identity)
    if not actor.id:
        raise HTTPException(status_code=401, detail="Missing userId in token")
    return actor
