import logging

from fastapi import APIRouter, HTTPException, status

from portal_stack.auth.schemas import LoginRequest, LoginResponse
from portal_stack.auth.utils import create_token
from portal_stack.core.config import DEPLOY_ENVIRONMENT, JWT_TTL_SECONDS, USERS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=LoginResponse)
def login(payload: LoginRequest):
    user = USERS.get(payload.username)
    if not user or user["password"] != payload.password:
        logger.warning("Rejected login for %s", payload.username)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    token = create_token(payload.username, user["role"], JWT_TTL_SECONDS, environment=DEPLOY_ENVIRONMENT)
    logger.info("Issued %s token for %s in %s", user["role"], payload.username, DEPLOY_ENVIRONMENT)
    return LoginResponse(token=token, role=user["role"], environment=DEPLOY_ENVIRONMENT)
