import random

import pytest

from scriptgen_kg.logic.knowledge_manager import KnowledgeManager, LayoutSessions
from scriptgen_kg.models import CandidateEntity, CandidateRelation, ExtractionResult
from scriptgen_kg.services.layout import CategoryFilter, Viewport
from scriptgen_kg.storage.blob import InMemoryBlobStore
from scriptgen_kg.storage.graph import GraphStore


class StubExtractor:
    def __init__(self, result):
        self.result = result
        self.calls = []

    async def extract(self, text):
        self.calls.append(text)
        return self.result


def _result():
    return ExtractionResult(
        entities=[
            CandidateEntity(label="张三", type="CHARACTER"),
            CandidateEntity(label="李四", type="CHARACTER"),
        ],
        relations=[CandidateRelation(source="张三", target="李四", relation="宿敌")],
    )


@pytest.mark.asyncio
async def test_ingest_merges_extraction_into_scope():
    store = GraphStore(InMemoryBlobStore())
    manager = KnowledgeManager(store, extractor=StubExtractor(_result()))

    assert await manager.ingest("剧本文本", "s1") is True
    view = manager.scoped_view("s1")
    assert {n.label for n in view.nodes} == {"张三", "李四"}
    assert manager.scoped_view(None).nodes == []


@pytest.mark.asyncio
async def test_failed_extraction_leaves_graph_untouched(mocker):
    store = GraphStore(InMemoryBlobStore())
    save = mocker.spy(store, "save")
    manager = KnowledgeManager(store, extractor=StubExtractor(None))

    assert await manager.ingest("剧本文本") is False
    save.assert_not_called()


@pytest.mark.asyncio
async def test_ingest_requires_extractor():
    manager = KnowledgeManager(GraphStore(InMemoryBlobStore()))
    with pytest.raises(RuntimeError):
        await manager.ingest("剧本文本")


def test_retrieve_context_and_highlights():
    manager = KnowledgeManager(GraphStore(InMemoryBlobStore()))
    manager.merge(_result().entities, _result().relations, "s1")

    assert "张三 --[宿敌]--> 李四" in manager.retrieve_context("张三", "s1")
    assert manager.retrieve_context("张三", None) == ""
    assert manager.retrieve_context("王五", "s1") == ""
    assert manager.simulate_retrieval("张三", "s1") == {"张三", "李四"}

    response = manager.retrieve("张三", "s1")
    assert set(response.highlight_ids) == {"张三", "李四"}
    assert response.context == "张三 --[宿敌]--> 李四"


def test_layout_sessions_refresh_after_graph_change():
    store = GraphStore(InMemoryBlobStore())
    manager = KnowledgeManager(store)
    sessions = LayoutSessions(store, rng=random.Random(0))
    manager.merge([{"label": "复仇", "type": "THEME"}], [], "global")

    engine = sessions.get("s1", Viewport(400, 300))
    assert set(engine.positions) == {"复仇"}
    first = (engine.positions["复仇"].x, engine.positions["复仇"].y)

    manager.merge(_result().entities, _result().relations, "s1")
    assert sessions.get("s1") is engine
    assert set(engine.positions) == {"复仇", "张三", "李四"}
    assert (engine.positions["复仇"].x, engine.positions["复仇"].y) == first

    engine = sessions.get("s1", category=CategoryFilter.CHARACTER)
    assert set(engine.positions) == {"张三", "李四"}

    sessions.close()
    manager.merge([{"label": "王五", "type": "CHARACTER"}], [], "s1")
    assert sessions.get("s1") is not engine
