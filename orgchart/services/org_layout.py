from __future__ import annotations

from collections.abc import Collection, Iterable
from xml.sax.saxutils import escape

from orgchart.services.connectors import ConnectorStyle, Rect, compute_connectors, format_number
from orgchart.services.org_tree import TreeNode, walk_levels

NODE_WIDTH = 180
NODE_HEIGHT = 110
HORIZONTAL_GAP = 64
VERTICAL_GAP = 72
CANVAS_PADDING = 36
AVATAR_RADIUS = 24

# (fill, text, border) per depth; CEO, C-level, managers, leads, staff, others
LEVEL_PALETTE: tuple[tuple[str, str, str], ...] = (
    ("#dbeafe", "#1e3a8a", "#bfdbfe"),
    ("#fce7f3", "#831843", "#fbcfe8"),
    ("#dcfce7", "#14532d", "#bbf7d0"),
    ("#f3e8ff", "#581c87", "#e9d5ff"),
    ("#fef9c3", "#713f12", "#fef08a"),
    ("#e0f2fe", "#0c4a6e", "#bae6fd"),
)
FALLBACK_PALETTE = ("#f3f4f6", "#111827", "#e5e7eb")


def level_palette(level: int) -> tuple[str, str, str]:
    if 0 <= level < len(LEVEL_PALETTE):
        return LEVEL_PALETTE[level]
    return FALLBACK_PALETTE


def initials(name: str) -> str:
    return "".join(part[:1].upper() for part in name.split(" "))[:2]


def layout_forest(
    forest: Iterable[TreeNode],
    collapsed: Collection[str] = (),
) -> dict[str, Rect]:
    """Assign a box to every visible node.

    Leaves take consecutive slots left to right and each parent sits centered
    above the span of its visible children. Descendants of collapsed nodes get
    no box.
    """
    rects: dict[str, Rect] = {}
    next_slot = 0

    def place(node: TreeNode, level: int) -> float:
        nonlocal next_slot
        top = CANVAS_PADDING + level * (NODE_HEIGHT + VERTICAL_GAP)
        visible_children = [] if node.id in collapsed else node.children
        if visible_children:
            centers = [place(child, level + 1) for child in visible_children]
            center_x = (centers[0] + centers[-1]) / 2
        else:
            center_x = CANVAS_PADDING + next_slot * (NODE_WIDTH + HORIZONTAL_GAP) + NODE_WIDTH / 2
            next_slot += 1
        rects[node.id] = Rect(left=center_x - NODE_WIDTH / 2, top=top, width=NODE_WIDTH, height=NODE_HEIGHT)
        return center_x

    for root in forest:
        place(root, 0)
    return rects


def canvas_size(rects: dict[str, Rect]) -> tuple[float, float]:
    if not rects:
        return 2 * CANVAS_PADDING, 2 * CANVAS_PADDING
    width = max(rect.right for rect in rects.values()) + CANVAS_PADDING
    height = max(rect.bottom for rect in rects.values()) + CANVAS_PADDING
    return width, height


def _render_box(node: TreeNode, rect: Rect, level: int, has_hidden_children: bool) -> str:
    fill, text_color, border = level_palette(level)
    avatar_cy = rect.top + 14 + AVATAR_RADIUS
    parts = [
        f'<g class="org-node" data-node-id="{escape(node.id)}">',
        (
            f'<rect x="{format_number(rect.left)}" y="{format_number(rect.top)}" '
            f'width="{format_number(rect.width)}" height="{format_number(rect.height)}" '
            f'rx="18" fill="{fill}" stroke="{border}" stroke-width="1.5" />'
        ),
        (
            f'<circle cx="{format_number(rect.center_x)}" cy="{format_number(avatar_cy)}" '
            f'r="{AVATAR_RADIUS}" fill="#f1f5f9" stroke="#e0e7ef" stroke-width="2" />'
        ),
        (
            f'<text x="{format_number(rect.center_x)}" y="{format_number(avatar_cy + 6)}" '
            f'text-anchor="middle" font-weight="700" font-size="18" fill="#64748b">'
            f"{escape(initials(node.name))}</text>"
        ),
        (
            f'<text x="{format_number(rect.center_x)}" y="{format_number(rect.bottom - 28)}" '
            f'text-anchor="middle" font-weight="700" font-size="15" fill="{text_color}">'
            f"{escape(node.name)}</text>"
        ),
        (
            f'<text x="{format_number(rect.center_x)}" y="{format_number(rect.bottom - 12)}" '
            f'text-anchor="middle" font-size="12" fill="{text_color}" opacity="0.8">'
            f"{escape(node.position)}</text>"
        ),
    ]
    if has_hidden_children:
        parts.append(
            f'<text x="{format_number(rect.right - 14)}" y="{format_number(rect.top + 20)}" '
            f'text-anchor="middle" font-weight="700" fill="#0369a1">+</text>'
        )
    parts.append("</g>")
    return "".join(parts)


def render_svg(
    forest: list[TreeNode],
    style: ConnectorStyle | str = ConnectorStyle.STRAIGHT,
    collapsed: Collection[str] = (),
) -> str:
    rects = layout_forest(forest, collapsed)
    width, height = canvas_size(rects)
    connectors = compute_connectors(forest, rects, style)

    parts = [
        (
            f'<svg xmlns="http://www.w3.org/2000/svg" width="{format_number(width)}" '
            f'height="{format_number(height)}" viewBox="0 0 {format_number(width)} {format_number(height)}" '
            f'font-family="sans-serif">'
        ),
        '<g class="org-connectors">',
        *(connector.to_svg() for connector in connectors),
        "</g>",
        '<g class="org-nodes">',
    ]
    for node, level in walk_levels(forest):
        rect = rects.get(node.id)
        if rect is None:
            continue
        parts.append(_render_box(node, rect, level, bool(node.children) and node.id in collapsed))
    parts.append("</g>")
    parts.append("</svg>")
    return "".join(parts)
