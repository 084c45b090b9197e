from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from orgchart.audit import client_ip, log_audit
from orgchart.db import get_db
from orgchart.errors import ApiError
from orgchart.models import AuditActorType
from orgchart.schemas import AdminAuthResponse, AdminLoginRequest
from orgchart.security import (
    create_access_token,
    ensure_login_attempt_allowed,
    full_permissions,
    register_login_failure,
    register_login_success,
    verify_admin_credentials,
)

router = APIRouter(tags=["auth"])


@router.post("/api/admin/auth/login", response_model=AdminAuthResponse)
def admin_login(
    payload: AdminLoginRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> AdminAuthResponse:
    username = payload.username.strip()
    ip = client_ip(request)

    if ip:
        try:
            ensure_login_attempt_allowed(ip)
        except ApiError:
            log_audit(
                db,
                actor_type=AuditActorType.SYSTEM,
                actor_id=username or "unknown",
                action="ADMIN_LOGIN_FAIL",
                success=False,
                details={"reason": "TOO_MANY_ATTEMPTS"},
                request=request,
            )
            raise

    if not verify_admin_credentials(username, payload.password):
        if ip:
            register_login_failure(ip)
        log_audit(
            db,
            actor_type=AuditActorType.SYSTEM,
            actor_id=username or "unknown",
            action="ADMIN_LOGIN_FAIL",
            success=False,
            details={"reason": "INVALID_CREDENTIALS"},
            request=request,
        )
        raise ApiError(status_code=401, code="INVALID_CREDENTIALS", message="Invalid username or password.")

    if ip:
        register_login_success(ip)
    token, expires_in, _claims = create_access_token(
        username=username,
        is_super_admin=True,
        permissions=full_permissions(),
    )
    request.state.actor = "admin"
    request.state.actor_id = username
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=username,
        action="ADMIN_LOGIN_SUCCESS",
        success=True,
        request=request,
    )
    return AdminAuthResponse(access_token=token, expires_in=expires_in)
