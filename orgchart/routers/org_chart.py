from typing import Any

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from orgchart.audit import log_audit
from orgchart.db import get_db
from orgchart.models import AuditActorType
from orgchart.schemas import (
    ChainIssueRead,
    ChainRepairResponse,
    ChainReportRead,
    ConnectorRead,
    ConnectorRequest,
    OrgNodeCreate,
    OrgNodeDeleteResponse,
    OrgNodeRead,
    OrgNodeUpdate,
    OrgTreeNodeRead,
)
from orgchart.security import require_admin_permission
from orgchart.services.connectors import ConnectorStyle, Rect, compute_connectors
from orgchart.services.org_exports import build_org_chart_xlsx_bytes
from orgchart.services.org_integrity import check_sibling_chains, repair_sibling_chains
from orgchart.services.org_layout import render_svg
from orgchart.services.org_nodes import create_node, delete_node, get_node, list_nodes, update_node
from orgchart.services.org_tree import TreeNode, build_tree
from orgchart.settings import get_settings

router = APIRouter(prefix="/api/admin/org-chart", tags=["org-chart"])
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
SVG_MEDIA_TYPE = "image/svg+xml"


def _actor_id(claims: dict[str, Any]) -> str:
    return str(claims.get("username") or claims.get("sub") or "admin")


def _to_tree_read(node: TreeNode, level: int = 0) -> OrgTreeNodeRead:
    return OrgTreeNodeRead(
        id=node.id,
        name=node.name,
        position=node.position,
        parent_id=node.parent_id,
        prev_id=node.prev_id,
        next_id=node.next_id,
        level=level,
        children=[_to_tree_read(child, level + 1) for child in node.children],
    )


def _default_style() -> ConnectorStyle:
    try:
        return ConnectorStyle(get_settings().default_connector_style)
    except ValueError:
        return ConnectorStyle.STRAIGHT


@router.get(
    "/nodes",
    response_model=list[OrgNodeRead],
    dependencies=[Depends(require_admin_permission("org_chart"))],
)
def list_org_nodes(db: Session = Depends(get_db)) -> list[OrgNodeRead]:
    return [OrgNodeRead.model_validate(node) for node in list_nodes(db)]


@router.post(
    "/nodes",
    response_model=OrgNodeRead,
    status_code=status.HTTP_201_CREATED,
)
def create_org_node(
    payload: OrgNodeCreate,
    request: Request,
    claims: dict[str, Any] = Depends(require_admin_permission("org_chart", write=True)),
    db: Session = Depends(get_db),
) -> OrgNodeRead:
    node = create_node(db, payload)
    result = OrgNodeRead.model_validate(node)
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=_actor_id(claims),
        action="ORG_NODE_CREATED",
        success=True,
        entity_type="org_node",
        entity_id=result.id,
        details={"parent_id": result.parent_id, "prev_id": result.prev_id},
        request=request,
    )
    return result


@router.get(
    "/nodes/{node_id}",
    response_model=OrgNodeRead,
    dependencies=[Depends(require_admin_permission("org_chart"))],
)
def get_org_node(node_id: str, db: Session = Depends(get_db)) -> OrgNodeRead:
    return OrgNodeRead.model_validate(get_node(db, node_id))


@router.patch("/nodes/{node_id}", response_model=OrgNodeRead)
def update_org_node(
    node_id: str,
    payload: OrgNodeUpdate,
    request: Request,
    claims: dict[str, Any] = Depends(require_admin_permission("org_chart", write=True)),
    db: Session = Depends(get_db),
) -> OrgNodeRead:
    result = OrgNodeRead.model_validate(update_node(db, node_id, payload))
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=_actor_id(claims),
        action="ORG_NODE_UPDATED",
        success=True,
        entity_type="org_node",
        entity_id=node_id,
        details={"name": result.name, "position": result.position},
        request=request,
    )
    return result


@router.delete("/nodes/{node_id}", response_model=OrgNodeDeleteResponse)
def delete_org_node(
    node_id: str,
    request: Request,
    cascade: bool = Query(default=False),
    claims: dict[str, Any] = Depends(require_admin_permission("org_chart", write=True)),
    db: Session = Depends(get_db),
) -> OrgNodeDeleteResponse:
    deleted_ids = delete_node(db, node_id, cascade=cascade)
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=_actor_id(claims),
        action="ORG_NODE_DELETED",
        success=True,
        entity_type="org_node",
        entity_id=node_id,
        details={"cascade": cascade, "deleted_ids": deleted_ids},
        request=request,
    )
    return OrgNodeDeleteResponse(ok=True, deleted_ids=deleted_ids)


@router.get(
    "/tree",
    response_model=list[OrgTreeNodeRead],
    dependencies=[Depends(require_admin_permission("org_chart"))],
)
def get_org_tree(db: Session = Depends(get_db)) -> list[OrgTreeNodeRead]:
    return [_to_tree_read(root) for root in build_tree(list_nodes(db))]


@router.post(
    "/connectors",
    response_model=list[ConnectorRead],
    dependencies=[Depends(require_admin_permission("org_chart"))],
)
def compute_org_connectors(payload: ConnectorRequest, db: Session = Depends(get_db)) -> list[ConnectorRead]:
    rects = {
        node_id: Rect(left=rect.left, top=rect.top, width=rect.width, height=rect.height)
        for node_id, rect in payload.rects.items()
    }
    connectors = compute_connectors(
        build_tree(list_nodes(db)),
        rects,
        payload.style,
        origin=payload.origin,
    )
    return [
        ConnectorRead(
            parent_id=item.parent_id,
            child_id=item.child_id,
            style=item.style,
            kind=item.kind,
            attributes=item.attributes,
            svg=item.to_svg(),
        )
        for item in connectors
    ]


@router.get(
    "/svg",
    dependencies=[Depends(require_admin_permission("org_chart"))],
)
def get_org_chart_svg(
    style: ConnectorStyle | None = Query(default=None),
    collapsed: list[str] = Query(default=[]),
    db: Session = Depends(get_db),
) -> Response:
    forest = build_tree(list_nodes(db))
    document = render_svg(forest, style or _default_style(), collapsed=set(collapsed))
    return Response(content=document, media_type=SVG_MEDIA_TYPE)


@router.get(
    "/integrity",
    response_model=ChainReportRead,
    dependencies=[Depends(require_admin_permission("org_chart"))],
)
def get_org_chart_integrity(db: Session = Depends(get_db)) -> ChainReportRead:
    report = check_sibling_chains(list_nodes(db))
    return ChainReportRead(
        ok=report.ok,
        checked_at_utc=report.checked_at_utc,
        node_count=report.node_count,
        group_count=report.group_count,
        issues=[
            ChainIssueRead(
                code=issue.code,
                parent_id=issue.parent_id,
                node_id=issue.node_id,
                detail=issue.detail,
            )
            for issue in report.issues
        ],
    )


@router.post("/repair", response_model=ChainRepairResponse)
def repair_org_chart(
    request: Request,
    claims: dict[str, Any] = Depends(require_admin_permission("org_chart", write=True)),
    db: Session = Depends(get_db),
) -> ChainRepairResponse:
    relinked = repair_sibling_chains(db)
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=_actor_id(claims),
        action="ORG_CHAIN_REPAIRED",
        success=True,
        entity_type="org_chart",
        details={"relinked": relinked},
        request=request,
    )
    return ChainRepairResponse(ok=True, relinked=relinked)


@router.get(
    "/export.xlsx",
    dependencies=[Depends(require_admin_permission("org_chart"))],
)
def export_org_chart(db: Session = Depends(get_db)) -> Response:
    content = build_org_chart_xlsx_bytes(build_tree(list_nodes(db)), title=f"{get_settings().app_name} Org Chart")
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": 'attachment; filename="org-chart.xlsx"'},
    )
