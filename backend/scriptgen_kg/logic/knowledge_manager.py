"""知识图谱业务编排：抽取 -> 合并 -> 检索，以及按作用域缓存的布局会话。"""

from __future__ import annotations

import logging
import random
from typing import Any, Iterable

from scriptgen_kg.models import GLOBAL_SCOPE, KnowledgeGraph, RetrievalResponse
from scriptgen_kg.services.knowledge_extractor import KnowledgeExtractor
from scriptgen_kg.services.knowledge_merger import KnowledgeMerger
from scriptgen_kg.services.layout import (
    CategoryFilter,
    LayoutEngine,
    LayoutParams,
    Viewport,
)
from scriptgen_kg.services.retrieval import (
    MatchMode,
    context_summary,
    find_relevant_subset,
    format_context_block,
)
from scriptgen_kg.storage.graph import GraphStore

logger = logging.getLogger(__name__)


class KnowledgeManager:
    """知识图谱的业务 orchestrator。"""

    def __init__(
        self,
        store: GraphStore,
        extractor: KnowledgeExtractor | None = None,
        merger: KnowledgeMerger | None = None,
    ):
        self.store = store
        self.extractor = extractor
        self.merger = merger or KnowledgeMerger(store)

    async def ingest(self, text: str, scope_id: str = GLOBAL_SCOPE) -> bool:
        """抽取并合并；抽取失败时图谱保持不变并返回 False。"""
        if self.extractor is None:
            raise RuntimeError("KnowledgeManager has no extractor configured")
        scope_label = "全局" if scope_id == GLOBAL_SCOPE else "局部"
        logger.info("正在提取知识图谱 (%s): %s", scope_label, scope_id)
        result = await self.extractor.extract(text)
        if result is None:
            return False
        # 过期的抽取结果同样合并，权重按最后写入生效
        return self.merger.merge(result.entities, result.relations, scope_id)

    def merge(
        self,
        entities: Iterable[Any],
        relations: Iterable[Any],
        scope_id: str = GLOBAL_SCOPE,
    ) -> bool:
        return self.merger.merge(entities, relations, scope_id)

    def scoped_view(self, scope_id: str | None) -> KnowledgeGraph:
        return self.store.scoped_view(scope_id)

    def retrieve(
        self,
        query: str,
        scope_id: str | None,
        mode: MatchMode = MatchMode.AUTO,
    ) -> RetrievalResponse:
        graph = self.store.scoped_view(scope_id)
        subset = find_relevant_subset(graph, query, mode)
        return RetrievalResponse(
            nodes=subset.nodes,
            links=subset.links,
            highlight_ids=[node.id for node in subset.nodes],
            context=context_summary(graph, query, mode=mode),
        )

    def retrieve_context(self, query: str, scope_id: str | None) -> str:
        """生成提示词用的记忆片段；无相关记忆时返回空串。"""
        graph = self.store.scoped_view(scope_id)
        if not graph.nodes:
            return ""
        return format_context_block(context_summary(graph, query))

    def simulate_retrieval(self, query: str, scope_id: str | None) -> set[str]:
        graph = self.store.scoped_view(scope_id)
        return {node.id for node in find_relevant_subset(graph, query).nodes}


class LayoutSessions:
    """每个作用域一个 LayoutEngine；图谱变更后下次访问时重新拉取视图。"""

    def __init__(
        self,
        store: GraphStore,
        params: LayoutParams = LayoutParams(),
        rng: random.Random | None = None,
    ):
        self.store = store
        self.params = params
        self.rng = rng
        self._engines: dict[str | None, LayoutEngine] = {}
        self._stale: set[str | None] = set()
        self._unsubscribe = store.on_graph_changed(self._mark_stale)

    def _mark_stale(self) -> None:
        self._stale.update(self._engines)

    def get(
        self,
        scope_id: str | None,
        viewport: Viewport | None = None,
        category: CategoryFilter | None = None,
    ) -> LayoutEngine:
        engine = self._engines.get(scope_id)
        if engine is None:
            engine = LayoutEngine(
                viewport or Viewport(800, 600), self.params, rng=self.rng
            )
            self._engines[scope_id] = engine
            self._stale.add(scope_id)
        elif viewport is not None:
            engine.resize(viewport)
        if category is not None and category != engine.category:
            engine.set_category(category)
        if scope_id in self._stale:
            self._stale.discard(scope_id)
            engine.set_graph(self.store.scoped_view(scope_id))
        return engine

    def close(self) -> None:
        self._unsubscribe()
        self._engines.clear()
        self._stale.clear()
