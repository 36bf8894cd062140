"""候选实体/关系并入图谱：按 label 去重、累计权重、按作用域隔离。"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from scriptgen_kg.models import (
    GLOBAL_SCOPE,
    EntityType,
    KGEntity,
    KGRelation,
    KnowledgeGraph,
)
from scriptgen_kg.storage.graph import GraphStore

logger = logging.getLogger(__name__)

MIN_LABEL_LENGTH = 2


def _field(item: Any, name: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(name)
    return getattr(item, name, None)


def _as_entity_type(value: Any) -> EntityType | None:
    if isinstance(value, EntityType):
        return value
    try:
        return EntityType(value)
    except ValueError:
        return None


def _find_visible_node(
    graph: KnowledgeGraph, label: str, scope_id: str
) -> KGEntity | None:
    # 全局节点对所有作用域可见，已存在的全局 label 不会再分叉出局部副本
    for node in graph.nodes:
        if node.label == label and (node.is_global or node.scope_id == scope_id):
            return node
    return None


class KnowledgeMerger:
    """合并引擎：单次 merge 对应一次完整的读-改-写。"""

    def __init__(self, store: GraphStore):
        self.store = store

    def merge(
        self,
        entities: Iterable[Any],
        relations: Iterable[Any],
        scope_id: str = GLOBAL_SCOPE,
    ) -> bool:
        with self.store.transaction() as tx:
            added_nodes, bumped = self._merge_entities(tx.graph, entities, scope_id)
            added_links = self._merge_relations(tx.graph, relations, scope_id)
            changed = bool(added_nodes or bumped or added_links)
            if changed:
                tx.mark_dirty()

        if not changed:
            return False
        logger.info(
            "knowledge merged into %s: +%d nodes, %d weight bumps, +%d links",
            scope_id,
            added_nodes,
            bumped,
            added_links,
        )
        self.store.notify_changed()
        return True

    @staticmethod
    def _merge_entities(
        graph: KnowledgeGraph, entities: Iterable[Any], scope_id: str
    ) -> tuple[int, int]:
        added = 0
        bumped = 0
        for item in entities:
            label = _field(item, "label")
            if not isinstance(label, str) or len(label) < MIN_LABEL_LENGTH:
                continue
            entity_type = _as_entity_type(_field(item, "type"))
            if entity_type is None:
                logger.debug("skip entity without valid type: %s", label)
                continue
            existing = _find_visible_node(graph, label, scope_id)
            if existing is not None:
                existing.weight += 1
                bumped += 1
                continue
            graph.nodes.append(
                KGEntity(
                    id=label,
                    label=label,
                    type=entity_type,
                    weight=1,
                    scope_id=scope_id,
                )
            )
            added += 1
        return added, bumped

    @staticmethod
    def _merge_relations(
        graph: KnowledgeGraph, relations: Iterable[Any], scope_id: str
    ) -> int:
        known = {link.key() for link in graph.links}
        added = 0
        for item in relations:
            source = _field(item, "source")
            target = _field(item, "target")
            relation = _field(item, "relation")
            fields = (source, target, relation)
            if not all(isinstance(value, str) and value for value in fields):
                logger.debug("skip malformed relation: %r", item)
                continue
            link = KGRelation(source=source, target=target, label=relation, scope_id=scope_id)
            if link.key() in known:
                continue
            graph.links.append(link)
            known.add(link.key())
            added += 1
        return added
