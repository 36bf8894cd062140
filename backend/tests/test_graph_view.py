import random

from scriptgen_kg.models import GLOBAL_SCOPE, KGEntity, KGRelation, KnowledgeGraph
from scriptgen_kg.services.graph_view import (
    LINK_ACTIVE_COLOR,
    LINK_IDLE_COLOR,
    NODE_COLORS,
    build_frame,
    link_opacity,
    node_opacity,
)
from scriptgen_kg.services.layout import CategoryFilter, LayoutEngine, Viewport


def _engine():
    graph = KnowledgeGraph(
        nodes=[
            KGEntity(id="张三", label="张三", type="CHARACTER", scope_id=GLOBAL_SCOPE),
            KGEntity(id="李四", label="李四", type="CHARACTER", scope_id=GLOBAL_SCOPE),
            KGEntity(id="赛博霓虹", label="赛博霓虹", type="LIGHTING", scope_id=GLOBAL_SCOPE),
        ],
        links=[
            KGRelation(source="张三", target="李四", label="宿敌", scope_id=GLOBAL_SCOPE),
            KGRelation(source="李四", target="赛博霓虹", label="笼罩", scope_id=GLOBAL_SCOPE),
        ],
    )
    engine = LayoutEngine(Viewport(640, 480), rng=random.Random(4))
    engine.set_graph(graph)
    return engine


def test_opacity_without_highlights_is_neutral():
    assert node_opacity("a", None) == 1.0
    assert node_opacity("a", set()) == 1.0
    assert link_opacity("a", "b", set()) == 0.6


def test_opacity_with_highlights_dims_the_rest():
    highlights = {"a", "b"}
    assert node_opacity("a", highlights) == 1.0
    assert node_opacity("c", highlights) == 0.1
    assert link_opacity("a", "b", highlights) == 1.0
    assert link_opacity("a", "c", highlights) == 0.05


def test_build_frame_without_highlights():
    frame = build_frame(_engine())
    assert frame.width == 640
    assert frame.category == CategoryFilter.ALL
    assert {n.id for n in frame.nodes} == {"张三", "李四", "赛博霓虹"}
    neon = next(n for n in frame.nodes if n.id == "赛博霓虹")
    assert neon.badge == "赛博"
    assert neon.color == NODE_COLORS[neon.type]
    assert all(n.opacity == 1.0 and not n.emphasized for n in frame.nodes)
    assert all(l.opacity == 0.6 and l.stroke == LINK_IDLE_COLOR for l in frame.links)


def test_build_frame_highlights_links_only_when_both_ends_match():
    frame = build_frame(_engine(), {"张三", "李四"})
    by_label = {l.label: l for l in frame.links}
    assert by_label["宿敌"].emphasized
    assert by_label["宿敌"].stroke == LINK_ACTIVE_COLOR
    assert by_label["宿敌"].stroke_width == 2.0
    assert not by_label["笼罩"].emphasized
    assert by_label["笼罩"].opacity == 0.05

    dimmed = next(n for n in frame.nodes if n.id == "赛博霓虹")
    assert dimmed.opacity == 0.1


def test_build_frame_follows_filter_and_drag_state():
    engine = _engine()
    engine.set_category(CategoryFilter.VISUAL)
    engine.start_drag("赛博霓虹")
    engine.drag_to(100, 100)

    frame = build_frame(engine)
    assert [n.id for n in frame.nodes] == ["赛博霓虹"]
    assert frame.links == []
    assert frame.dragging_id == "赛博霓虹"
    assert (frame.nodes[0].x, frame.nodes[0].y) == (100, 100)
    assert frame.nodes[0].dragging
