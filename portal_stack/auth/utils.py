import time
from typing import Set

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from portal_stack.core.config import DEPLOY_ENVIRONMENT, JWT_ALG, JWT_SECRET

# Operators compile and submit topologies, viewers only read them.
ROLE_OPERATOR = "operator"
ROLE_VIEWER = "viewer"

ALLOWED_ROLES: Set[str] = {ROLE_OPERATOR, ROLE_VIEWER}

security = HTTPBearer()


class AuthContext(BaseModel):
    username: str
    role: str
    environment: str


def create_token(
    username: str,
    role: str,
    ttl_seconds: int,
    environment: str = DEPLOY_ENVIRONMENT,
    secret: str = JWT_SECRET,
    alg: str = JWT_ALG,
) -> str:
    issued_at = int(time.time())
    claims = {
        "sub": username,
        "role": role,
        "env": environment,
        "iat": issued_at,
        "exp": issued_at + ttl_seconds,
    }
    return jwt.encode(claims, secret, algorithm=alg)


def parse_token(credentials: HTTPAuthorizationCredentials = Depends(security)) -> AuthContext:
    try:
        claims = jwt.decode(
            credentials.credentials, JWT_SECRET, algorithms=[JWT_ALG], options={"require": ["exp", "env"]}
        )
    except jwt.PyJWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    if claims.get("role") not in ALLOWED_ROLES:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid role")
    # A token only authorizes changes to the environment this process declares topologies for.
    if claims["env"] != DEPLOY_ENVIRONMENT:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token issued for another environment")
    return AuthContext(username=claims.get("sub", ""), role=claims["role"], environment=claims["env"])


def require_roles(*roles: str):
    def _check(ctx: AuthContext = Depends(parse_token)) -> AuthContext:
        if ctx.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
        return ctx

    return _check
