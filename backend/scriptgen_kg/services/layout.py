"""Force-directed layout for a filtered knowledge graph view.

Positions are relaxed in fixed-size batches: repulsion between nearby node
pairs, springs along edges, and a weak pull toward the viewport centre, with
velocity damping and clamping to the viewport. A drag overrides the simulation
for the dragged node until it is released.
"""

from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass, replace
from enum import Enum
from typing import Collection, Iterable, Mapping, Sequence

from scriptgen_kg.config import KG_LAYOUT_ITERATIONS
from scriptgen_kg.models import (
    EntityType,
    KGEntity,
    KGRelation,
    KnowledgeGraph,
    NodePosition,
)

logger = logging.getLogger(__name__)


class CategoryFilter(str, Enum):
    ALL = "ALL"
    CHARACTER = "CHARACTER"
    LOCATION = "LOCATION"
    VISUAL = "VISUAL"


_CATEGORY_TYPES: dict[CategoryFilter, frozenset[EntityType]] = {
    CategoryFilter.CHARACTER: frozenset({EntityType.CHARACTER}),
    CategoryFilter.LOCATION: frozenset({EntityType.LOCATION}),
    CategoryFilter.VISUAL: frozenset(
        {EntityType.LIGHTING, EntityType.CAMERA, EntityType.STYLE}
    ),
}


@dataclass(frozen=True)
class Viewport:
    width: float
    height: float

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError("viewport size must be > 0")

    @property
    def center(self) -> tuple[float, float]:
        return self.width / 2, self.height / 2


@dataclass(frozen=True)
class LayoutParams:
    repulsion: float = 120.0
    repulsion_cutoff: float = 400.0
    rest_length: float = 120.0
    spring: float = 0.08
    center_pull: float = 0.04
    damping: float = 0.85
    iterations: int = KG_LAYOUT_ITERATIONS
    margin: float = 30.0
    spawn_margin: float = 50.0


def _clamp(value: float, margin: float, size: float) -> float:
    # a viewport narrower than two margins collapses onto its centre line
    low, high = margin, size - margin
    if low > high:
        return size / 2
    return max(low, min(high, value))


def filter_graph(
    graph: KnowledgeGraph, category: CategoryFilter = CategoryFilter.ALL
) -> tuple[list[KGEntity], list[KGRelation]]:
    """Nodes of the selected category and the edges with both endpoints visible."""
    if category is CategoryFilter.ALL:
        nodes = list(graph.nodes)
    else:
        allowed = _CATEGORY_TYPES[category]
        nodes = [node for node in graph.nodes if node.type in allowed]
    ids = {node.id for node in nodes}
    links = [
        link for link in graph.links if link.source in ids and link.target in ids
    ]
    return nodes, links


def seed_positions(
    positions: Mapping[str, NodePosition],
    node_ids: Iterable[str],
    viewport: Viewport,
    params: LayoutParams = LayoutParams(),
    rng: random.Random | None = None,
) -> dict[str, NodePosition]:
    """Keep known positions, seed missing ids randomly, drop ids no longer present."""
    rng = rng or random.Random()
    seeded: dict[str, NodePosition] = {}
    for node_id in node_ids:
        known = positions.get(node_id)
        if known is not None:
            seeded[node_id] = known
            continue
        seeded[node_id] = NodePosition(
            id=node_id,
            x=_clamp(
                rng.uniform(params.spawn_margin, viewport.width - params.spawn_margin),
                params.spawn_margin,
                viewport.width,
            ),
            y=_clamp(
                rng.uniform(params.spawn_margin, viewport.height - params.spawn_margin),
                params.spawn_margin,
                viewport.height,
            ),
        )
    return seeded


def relax(
    positions: Mapping[str, NodePosition],
    edges: Sequence[KGRelation],
    viewport: Viewport,
    params: LayoutParams = LayoutParams(),
    iterations: int | None = None,
    pinned: Collection[str] = (),
) -> dict[str, NodePosition]:
    """Run a bounded number of relax passes and return new position objects.

    Pinned nodes still push and pull their neighbours but never move, and their
    velocity stays zero.
    """
    current = {node_id: pos.copy() for node_id, pos in positions.items()}
    ids = list(current)
    passes = params.iterations if iterations is None else iterations
    cx, cy = viewport.center
    k_sq = params.repulsion * params.repulsion

    for _ in range(passes):
        forces = {node_id: [0.0, 0.0] for node_id in ids}

        for a in range(len(ids)):
            u = current[ids[a]]
            for b in range(a + 1, len(ids)):
                v = current[ids[b]]
                dx = v.x - u.x
                dy = v.y - u.y
                dist_sq = dx * dx + dy * dy or 1.0
                dist = math.sqrt(dist_sq)
                if dist >= params.repulsion_cutoff:
                    continue
                f = k_sq / dist_sq
                fx = dx / dist * f
                fy = dy / dist * f
                forces[u.id][0] -= fx
                forces[u.id][1] -= fy
                forces[v.id][0] += fx
                forces[v.id][1] += fy

        for edge in edges:
            u = current.get(edge.source)
            v = current.get(edge.target)
            if u is None or v is None or u is v:
                continue
            dx = v.x - u.x
            dy = v.y - u.y
            dist = math.sqrt(dx * dx + dy * dy) or 1.0
            f = (dist - params.rest_length) * params.spring
            fx = dx / dist * f
            fy = dy / dist * f
            forces[u.id][0] += fx
            forces[u.id][1] += fy
            forces[v.id][0] -= fx
            forces[v.id][1] -= fy

        for node_id in ids:
            p = current[node_id]
            if node_id in pinned:
                p.vx = p.vy = 0.0
                continue
            fx, fy = forces[node_id]
            fx += (cx - p.x) * params.center_pull
            fy += (cy - p.y) * params.center_pull
            p.vx = (p.vx + fx) * params.damping
            p.vy = (p.vy + fy) * params.damping
            p.x = _clamp(p.x + p.vx, params.margin, viewport.width)
            p.y = _clamp(p.y + p.vy, params.margin, viewport.height)

    return current


def _signature(
    nodes: Sequence[KGEntity], links: Sequence[KGRelation]
) -> tuple[frozenset[str], frozenset[tuple[str, str, str, str]]]:
    return frozenset(node.id for node in nodes), frozenset(link.key() for link in links)


class LayoutEngine:
    """Layout state for one open graph view.

    The filtered set is re-seeded and relaxed only when its identity (node ids
    and edge keys) changes; positions of nodes that stay visible are kept.
    """

    def __init__(
        self,
        viewport: Viewport,
        params: LayoutParams = LayoutParams(),
        rng: random.Random | None = None,
    ) -> None:
        self.viewport = viewport
        self.params = params
        self.rng = rng or random.Random()
        self.category = CategoryFilter.ALL
        self.dragging_id: str | None = None
        self._graph = KnowledgeGraph.empty()
        self._nodes: list[KGEntity] = []
        self._links: list[KGRelation] = []
        self._positions: dict[str, NodePosition] = {}
        self._signature: tuple | None = None

    @property
    def positions(self) -> dict[str, NodePosition]:
        return self._positions

    @property
    def visible_nodes(self) -> list[KGEntity]:
        return list(self._nodes)

    @property
    def visible_links(self) -> list[KGRelation]:
        return list(self._links)

    def set_graph(self, graph: KnowledgeGraph) -> None:
        self._graph = graph
        self._refilter()

    def set_category(self, category: CategoryFilter) -> None:
        self.category = CategoryFilter(category)
        self._refilter()

    def resize(self, viewport: Viewport) -> None:
        if viewport == self.viewport:
            return
        self.viewport = viewport
        for pos in self._positions.values():
            pos.x = _clamp(pos.x, self.params.margin, viewport.width)
            pos.y = _clamp(pos.y, self.params.margin, viewport.height)

    def _refilter(self) -> None:
        nodes, links = filter_graph(self._graph, self.category)
        self._nodes, self._links = nodes, links
        signature = _signature(nodes, links)
        if signature == self._signature:
            return
        self._signature = signature
        settled = {node.id for node in nodes if node.id in self._positions}
        self._positions = seed_positions(
            self._positions,
            (node.id for node in nodes),
            self.viewport,
            self.params,
            self.rng,
        )
        if self.dragging_id not in self._positions:
            self.dragging_id = None
        # nodes that stayed visible keep their place; only newcomers settle
        if len(settled) < len(self._positions):
            self._run_relax(pinned=settled)

    def _run_relax(self, pinned: set[str] | None = None) -> None:
        if not self._positions:
            return
        pinned = set(pinned or ())
        if self.dragging_id:
            pinned.add(self.dragging_id)
        self._positions = relax(
            self._positions,
            self._links,
            self.viewport,
            self.params,
            pinned=pinned,
        )

    def relax(self) -> dict[str, NodePosition]:
        """Relax the current set; a no-op while a node is being dragged."""
        if self.dragging_id is not None:
            logger.debug("relax skipped while dragging %s", self.dragging_id)
            return self._positions
        self._run_relax()
        return self._positions

    def start_drag(self, node_id: str) -> None:
        pos = self._positions.get(node_id)
        if pos is None:
            raise KeyError(f"node not in layout: {node_id}")
        self.dragging_id = node_id
        pos.vx = pos.vy = 0.0

    def drag_to(self, x: float, y: float) -> NodePosition:
        if self.dragging_id is None:
            raise ValueError("no node is being dragged")
        margin = self.params.margin
        pos = replace(
            self._positions[self.dragging_id],
            x=_clamp(x, margin, self.viewport.width),
            y=_clamp(y, margin, self.viewport.height),
            vx=0.0,
            vy=0.0,
        )
        self._positions[self.dragging_id] = pos
        return pos

    def end_drag(self) -> None:
        self.dragging_id = None
