"""图谱视图帧：把布局坐标与检索高亮组合成前端可直接渲染的数据。"""

from __future__ import annotations

from typing import AbstractSet, List, Optional

from pydantic import BaseModel, Field

from scriptgen_kg.models import EntityType
from scriptgen_kg.services.layout import CategoryFilter, LayoutEngine

NODE_COLORS: dict[EntityType, str] = {
    EntityType.CHARACTER: "#818cf8",
    EntityType.LOCATION: "#34d399",
    EntityType.THEME: "#fbbf24",
    EntityType.STYLE: "#f472b6",
    EntityType.OBJECT: "#9ca3af",
    EntityType.LIGHTING: "#facc15",
    EntityType.CAMERA: "#f87171",
}
DEFAULT_NODE_COLOR = "#ffffff"

NODE_DIMMED_OPACITY = 0.1
LINK_IDLE_OPACITY = 0.6
LINK_DIMMED_OPACITY = 0.05
LINK_ACTIVE_COLOR = "#60a5fa"
LINK_IDLE_COLOR = "#4b5563"


class FrameNode(BaseModel):
    id: str
    label: str
    badge: str
    type: EntityType
    weight: int
    x: float
    y: float
    color: str
    opacity: float
    emphasized: bool = False
    dragging: bool = False


class FrameLink(BaseModel):
    source: str
    target: str
    label: str
    x1: float
    y1: float
    x2: float
    y2: float
    stroke: str
    stroke_width: float
    opacity: float
    emphasized: bool = False


class GraphFrame(BaseModel):
    width: float
    height: float
    category: CategoryFilter
    nodes: List[FrameNode] = Field(default_factory=list)
    links: List[FrameLink] = Field(default_factory=list)
    dragging_id: Optional[str] = None


def node_opacity(node_id: str, highlights: AbstractSet[str] | None) -> float:
    if not highlights:
        return 1.0
    return 1.0 if node_id in highlights else NODE_DIMMED_OPACITY


def link_opacity(source: str, target: str, highlights: AbstractSet[str] | None) -> float:
    if not highlights:
        return LINK_IDLE_OPACITY
    # 两端都命中时才高亮
    if source in highlights and target in highlights:
        return 1.0
    return LINK_DIMMED_OPACITY


def build_frame(
    engine: LayoutEngine, highlights: AbstractSet[str] | None = None
) -> GraphFrame:
    positions = engine.positions
    nodes = []
    for node in engine.visible_nodes:
        pos = positions.get(node.id)
        if pos is None:
            continue
        opacity = node_opacity(node.id, highlights)
        nodes.append(
            FrameNode(
                id=node.id,
                label=node.label,
                badge=node.label[:2],
                type=node.type,
                weight=node.weight,
                x=pos.x,
                y=pos.y,
                color=NODE_COLORS.get(node.type, DEFAULT_NODE_COLOR),
                opacity=opacity,
                emphasized=bool(highlights) and opacity == 1.0,
                dragging=engine.dragging_id == node.id,
            )
        )

    links = []
    for link in engine.visible_links:
        u = positions.get(link.source)
        v = positions.get(link.target)
        if u is None or v is None:
            continue
        opacity = link_opacity(link.source, link.target, highlights)
        active = opacity == 1.0
        links.append(
            FrameLink(
                source=link.source,
                target=link.target,
                label=link.label,
                x1=u.x,
                y1=u.y,
                x2=v.x,
                y2=v.y,
                stroke=LINK_ACTIVE_COLOR if active else LINK_IDLE_COLOR,
                stroke_width=2.0 if active else 1.5,
                opacity=opacity,
                emphasized=active,
            )
        )

    return GraphFrame(
        width=engine.viewport.width,
        height=engine.viewport.height,
        category=engine.category,
        nodes=nodes,
        links=links,
        dragging_id=engine.dragging_id,
    )
