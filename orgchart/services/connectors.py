from __future__ import annotations

import enum
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from orgchart.services.org_tree import TreeNode, iter_connections


class ConnectorStyle(str, enum.Enum):
    STRAIGHT = "straight"
    CURVED = "curved"
    ELBOW = "elbow"


STYLE_STROKES: dict[ConnectorStyle, str] = {
    ConnectorStyle.STRAIGHT: "#a3a3a3",
    ConnectorStyle.CURVED: "#60a5fa",
    ConnectorStyle.ELBOW: "#fbbf24",
}
STROKE_WIDTH = 2
CURVE_BEND = 20


@dataclass(frozen=True, slots=True)
class Rect:
    left: float
    top: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.left + self.width

    @property
    def bottom(self) -> float:
        return self.top + self.height

    @property
    def center_x(self) -> float:
        return self.left + self.width / 2


@dataclass(frozen=True, slots=True)
class Connector:
    parent_id: str
    child_id: str
    style: ConnectorStyle
    kind: str
    attributes: dict[str, str | float] = field(default_factory=dict)

    def to_svg(self) -> str:
        rendered = " ".join(
            f'{key}="{format_number(value) if isinstance(value, (int, float)) else value}"'
            for key, value in self.attributes.items()
        )
        return f"<{self.kind} {rendered} />"


def format_number(value: float) -> str:
    number = round(float(value), 2)
    if number.is_integer():
        return str(int(number))
    return f"{number:.2f}".rstrip("0").rstrip(".")


def anchor_points(
    parent_rect: Rect,
    child_rect: Rect,
    origin: tuple[float, float] = (0.0, 0.0),
) -> tuple[float, float, float, float]:
    origin_x, origin_y = origin
    x1 = parent_rect.center_x - origin_x
    y1 = parent_rect.bottom - origin_y
    x2 = child_rect.center_x - origin_x
    y2 = child_rect.top - origin_y
    return x1, y1, x2, y2


def compute_connector(
    parent_rect: Rect,
    child_rect: Rect,
    style: ConnectorStyle | str,
    *,
    parent_id: str = "",
    child_id: str = "",
    origin: tuple[float, float] = (0.0, 0.0),
) -> Connector:
    style = ConnectorStyle(style)
    x1, y1, x2, y2 = anchor_points(parent_rect, child_rect, origin)
    stroke = STYLE_STROKES[style]

    if style is ConnectorStyle.STRAIGHT:
        return Connector(
            parent_id=parent_id,
            child_id=child_id,
            style=style,
            kind="line",
            attributes={
                "x1": x1,
                "y1": y1,
                "x2": x2,
                "y2": y2,
                "stroke": stroke,
                "stroke-width": STROKE_WIDTH,
            },
        )

    if style is ConnectorStyle.CURVED:
        mid_x = (x1 + x2) / 2
        path = (
            f"M{format_number(x1)},{format_number(y1)} "
            f"C{format_number(mid_x)},{format_number(y1 + CURVE_BEND)} "
            f"{format_number(mid_x)},{format_number(y2 - CURVE_BEND)} "
            f"{format_number(x2)},{format_number(y2)}"
        )
        return Connector(
            parent_id=parent_id,
            child_id=child_id,
            style=style,
            kind="path",
            attributes={"d": path, "stroke": stroke, "fill": "none", "stroke-width": STROKE_WIDTH},
        )

    mid_y = (y1 + y2) / 2
    points = " ".join(
        f"{format_number(x)},{format_number(y)}"
        for x, y in ((x1, y1), (x1, mid_y), (x2, mid_y), (x2, y2))
    )
    return Connector(
        parent_id=parent_id,
        child_id=child_id,
        style=style,
        kind="polyline",
        attributes={"points": points, "stroke": stroke, "fill": "none", "stroke-width": STROKE_WIDTH},
    )


def compute_connectors(
    forest: Iterable[TreeNode],
    rects: Mapping[str, Rect],
    style: ConnectorStyle | str,
    *,
    origin: tuple[float, float] = (0.0, 0.0),
) -> list[Connector]:
    connectors: list[Connector] = []
    for parent_id, child_id in iter_connections(forest):
        parent_rect = rects.get(parent_id)
        child_rect = rects.get(child_id)
        # boxes not laid out yet (or collapsed) get no connector
        if parent_rect is None or child_rect is None:
            continue
        connectors.append(
            compute_connector(
                parent_rect,
                child_rect,
                style,
                parent_id=parent_id,
                child_id=child_id,
                origin=origin,
            )
        )
    return connectors
