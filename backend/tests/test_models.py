import pytest
from pydantic import ValidationError

from scriptgen_kg.models import (
    GLOBAL_SCOPE,
    CandidateEntity,
    EntityType,
    KGEntity,
    KGRelation,
    KnowledgeGraph,
    NodePosition,
)


def test_entity_accepts_camel_case_scope():
    node = KGEntity.model_validate(
        {"id": "张三", "label": "张三", "type": "CHARACTER", "weight": 3, "scopeId": "s1"}
    )
    assert node.scope_id == "s1"
    assert node.type is EntityType.CHARACTER
    assert not node.is_global

    dumped = node.model_dump(mode="json", by_alias=True)
    assert dumped["scopeId"] == "s1"
    assert "scope_id" not in dumped


def test_entity_rejects_unknown_type_and_zero_weight():
    with pytest.raises(ValidationError):
        KGEntity(id="x", label="x", type="MONSTER", scope_id=GLOBAL_SCOPE)
    with pytest.raises(ValidationError):
        KGEntity(id="x", label="x", type="THEME", weight=0, scope_id=GLOBAL_SCOPE)


def test_candidate_entity_requires_type():
    with pytest.raises(ValidationError):
        CandidateEntity(label="复仇")


def test_knowledge_graph_helpers():
    graph = KnowledgeGraph(
        nodes=[KGEntity(id="复仇", label="复仇", type="THEME", scope_id=GLOBAL_SCOPE)],
        links=[KGRelation(source="复仇", target="张三", label="驱动", scope_id="s1")],
    )
    assert graph.node_ids() == {"复仇"}
    assert graph.labels_by_id() == {"复仇": "复仇"}
    assert graph.links[0].key() == ("复仇", "张三", "驱动", "s1")
    assert KnowledgeGraph.empty().nodes == []


def test_node_position_copy_is_independent():
    pos = NodePosition(id="a", x=1.0, y=2.0, vx=3.0, vy=4.0)
    clone = pos.copy()
    clone.x = 99.0
    assert pos.x == 1.0
    assert clone == NodePosition(id="a", x=99.0, y=2.0, vx=3.0, vy=4.0)
