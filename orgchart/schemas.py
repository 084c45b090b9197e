from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from orgchart.models import AuditActorType
from orgchart.services.connectors import ConnectorStyle


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        str_strip_whitespace=True,
    )


class OrgNodeCreate(_CamelModel):
    name: str = Field(min_length=1, max_length=255)
    position: str = Field(min_length=1, max_length=255)
    parent_id: str | None = Field(default=None, min_length=1, max_length=64)


class OrgNodeUpdate(_CamelModel):
    name: str = Field(min_length=1, max_length=255)
    position: str = Field(min_length=1, max_length=255)


class OrgNodeRead(_CamelModel):
    id: str
    name: str
    position: str
    parent_id: str | None = None
    prev_id: str | None = None
    next_id: str | None = None


class OrgTreeNodeRead(OrgNodeRead):
    level: int = 0
    children: list[OrgTreeNodeRead] = Field(default_factory=list)


class OrgNodeDeleteResponse(_CamelModel):
    ok: bool
    deleted_ids: list[str]


class RectIn(_CamelModel):
    left: float
    top: float
    width: float = Field(ge=0)
    height: float = Field(ge=0)


class ConnectorRequest(_CamelModel):
    style: ConnectorStyle = ConnectorStyle.STRAIGHT
    origin: tuple[float, float] = (0.0, 0.0)
    rects: dict[str, RectIn] = Field(default_factory=dict)


class ConnectorRead(_CamelModel):
    parent_id: str
    child_id: str
    style: ConnectorStyle
    kind: str
    attributes: dict[str, str | float]
    svg: str


class ChainIssueRead(_CamelModel):
    code: str
    parent_id: str | None = None
    node_id: str | None = None
    detail: str


class ChainReportRead(_CamelModel):
    ok: bool
    checked_at_utc: datetime
    node_count: int
    group_count: int
    issues: list[ChainIssueRead]


class ChainRepairResponse(_CamelModel):
    ok: bool
    relinked: int


class AdminLoginRequest(BaseModel):
    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class AdminAuthResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class AuditLogRead(BaseModel):
    id: int
    ts_utc: datetime
    actor_type: AuditActorType
    actor_id: str
    action: str
    entity_type: str | None = None
    entity_id: str | None = None
    ip: str | None = None
    user_agent: str | None = None
    success: bool
    details: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(from_attributes=True)
