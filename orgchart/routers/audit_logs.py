from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from orgchart.db import get_db
from orgchart.models import AuditLog
from orgchart.schemas import AuditLogRead
from orgchart.security import require_admin_permission

router = APIRouter(tags=["audit"])


@router.get(
    "/api/admin/audit-logs",
    response_model=list[AuditLogRead],
    dependencies=[Depends(require_admin_permission("audit"))],
)
def list_audit_logs(
    action: str | None = Query(default=None),
    entity_type: str | None = Query(default=None),
    entity_id: str | None = Query(default=None),
    success: bool | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
) -> list[AuditLogRead]:
    stmt = select(AuditLog).order_by(AuditLog.ts_utc.desc(), AuditLog.id.desc()).limit(limit)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if entity_type:
        stmt = stmt.where(AuditLog.entity_type == entity_type)
    if entity_id:
        stmt = stmt.where(AuditLog.entity_id == entity_id)
    if success is not None:
        stmt = stmt.where(AuditLog.success.is_(success))
    return [AuditLogRead.model_validate(row) for row in db.scalars(stmt).all()]
