"""图谱存储服务：整图读写、作用域投影与变更订阅。"""

from __future__ import annotations

import json
import logging
import threading
from contextlib import contextmanager
from typing import Callable, Iterator

from pydantic import ValidationError

from scriptgen_kg.config import KG_STORAGE_KEY
from scriptgen_kg.models import KnowledgeGraph
from scriptgen_kg.storage.blob import BlobStore

logger = logging.getLogger(__name__)

GraphChangedCallback = Callable[[], None]


class GraphTransaction:
    """一次读-改-写周期；调用方修改 graph 后调用 mark_dirty() 才会落盘。"""

    def __init__(self, graph: KnowledgeGraph) -> None:
        self.graph = graph
        self.dirty = False

    def mark_dirty(self) -> None:
        self.dirty = True


class GraphStore:
    """持有全部作用域的图谱，对外只暴露作用域视图。"""

    def __init__(self, blob_store: BlobStore, key: str = KG_STORAGE_KEY):
        self._blob_store = blob_store
        self._key = key
        self._lock = threading.RLock()
        self._subscribers: list[GraphChangedCallback] = []

    def load(self) -> KnowledgeGraph:
        """读取整图；数据缺失或损坏时返回空图，从不抛出。"""
        try:
            raw = self._blob_store.get(self._key)
        except Exception:
            logger.exception("knowledge graph blob read failed: %s", self._key)
            return KnowledgeGraph.empty()
        if raw is None:
            return KnowledgeGraph.empty()
        try:
            payload = json.loads(raw.decode("utf-8"))
            return KnowledgeGraph.model_validate(payload)
        except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as exc:
            logger.warning("knowledge graph blob corrupt, starting empty: %s", exc)
            return KnowledgeGraph.empty()

    def save(self, graph: KnowledgeGraph) -> None:
        """尽力持久化；失败只记录日志，不向调用方抛出。"""
        try:
            data = graph.model_dump(mode="json", by_alias=True)
            raw = json.dumps(data, ensure_ascii=False).encode("utf-8")
            self._blob_store.set(self._key, raw)
        except Exception:
            logger.exception("knowledge graph save failed: %s", self._key)

    def scoped_view(self, scope_id: str | None) -> KnowledgeGraph:
        """全局节点 ∪ 指定作用域节点，以及两端都在该节点集内的边。"""
        return project_scope(self.load(), scope_id)

    @contextmanager
    def transaction(self) -> Iterator[GraphTransaction]:
        with self._lock:
            tx = GraphTransaction(self.load())
            yield tx
            if tx.dirty:
                self.save(tx.graph)

    def on_graph_changed(self, callback: GraphChangedCallback) -> Callable[[], None]:
        """注册变更回调，返回取消订阅函数。"""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def notify_changed(self) -> None:
        for callback in list(self._subscribers):
            try:
                callback()
            except Exception:
                logger.exception("graph changed subscriber failed")


def project_scope(graph: KnowledgeGraph, scope_id: str | None) -> KnowledgeGraph:
    nodes = [
        node for node in graph.nodes if node.is_global or node.scope_id == scope_id
    ]
    node_ids = {node.id for node in nodes}
    links = [
        link
        for link in graph.links
        if link.source in node_ids and link.target in node_ids
    ]
    return KnowledgeGraph(
        nodes=[node.model_copy() for node in nodes],
        links=[link.model_copy() for link in links],
    )
