from typing import Any

from fastapi import APIRouter, Depends, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from callup.audit import client_ip, log_audit
from callup.db import get_db
from callup.errors import ApiError
from callup.models import AuditActorType, User
from callup.schemas import LoginRequest, LoginResponse, MeResponse
from callup.security import (
    claims_role,
    claims_user_id,
    create_access_token,
    ensure_login_attempt_allowed,
    register_login_failure,
    register_login_success,
    require_user,
    verify_password,
)

router = APIRouter(tags=["auth"])


@router.post("/api/auth/login", response_model=LoginResponse)
def login(
    payload: LoginRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> LoginResponse:
    username = payload.username.strip()
    ip = client_ip(request)
    user_agent = request.headers.get("user-agent")
    request_id = getattr(request.state, "request_id", None)

    if ip:
        try:
            ensure_login_attempt_allowed(ip)
        except ApiError:
            log_audit(
                db,
                actor_type=AuditActorType.SYSTEM,
                actor_id=username or "unknown",
                action="LOGIN_FAIL",
                success=False,
                ip=ip,
                user_agent=user_agent,
                details={"reason": "TOO_MANY_ATTEMPTS"},
                request_id=request_id,
            )
            raise

    user = db.scalar(select(User).where(User.username == username))
    if user is None or not user.is_active or not verify_password(payload.password, user.password_hash):
        if ip:
            register_login_failure(ip)
        log_audit(
            db,
            actor_type=AuditActorType.SYSTEM,
            actor_id=username or "unknown",
            action="LOGIN_FAIL",
            success=False,
            ip=ip,
            user_agent=user_agent,
            details={"reason": "INVALID_CREDENTIALS"},
            request_id=request_id,
        )
        raise ApiError(status_code=401, code="INVALID_CREDENTIALS", message="Invalid credentials.")

    if ip:
        register_login_success(ip)

    access_token, expires_in, claims = create_access_token(user)
    request.state.actor = claims["role"].lower()
    request.state.actor_id = claims["sub"]

    log_audit(
        db,
        actor_type=AuditActorType.USER,
        actor_id=claims["sub"],
        action="LOGIN_SUCCESS",
        success=True,
        ip=ip,
        user_agent=user_agent,
        details={"access_jti": claims["jti"]},
        request_id=request_id,
    )
    return LoginResponse(access_token=access_token, expires_in=expires_in)


@router.get("/api/auth/me", response_model=MeResponse)
def me(claims: dict[str, Any] = Depends(require_user)) -> MeResponse:
    return MeResponse(
        user_id=claims_user_id(claims),
        username=str(claims.get("username") or ""),
        name=claims.get("name"),
        role=claims_role(claims),
    )
