"""知识图谱领域模型：实体、关系、作用域视图与布局坐标。"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

GLOBAL_SCOPE = "global"


class EntityType(str, Enum):
    CHARACTER = "CHARACTER"
    LOCATION = "LOCATION"
    THEME = "THEME"
    STYLE = "STYLE"
    OBJECT = "OBJECT"
    LIGHTING = "LIGHTING"
    CAMERA = "CAMERA"


class KGEntity(BaseModel):
    """图谱节点。

    由合并引擎创建的节点 id 与 label 相同：label 是"全局或同作用域"可见范围内的主键。
    scope_id 在创建时确定，此后不再变化。
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    label: str
    type: EntityType
    weight: int = Field(1, ge=1, description="出现次数，只增不减")
    scope_id: str = Field(..., alias="scopeId")

    @property
    def is_global(self) -> bool:
        return self.scope_id == GLOBAL_SCOPE


class KGRelation(BaseModel):
    """有向边，source/target 引用实体 id（即实体 label）。"""

    model_config = ConfigDict(populate_by_name=True)

    source: str
    target: str
    label: str
    scope_id: str = Field(..., alias="scopeId")

    def key(self) -> tuple[str, str, str, str]:
        return (self.source, self.target, self.label, self.scope_id)


class KnowledgeGraph(BaseModel):
    """完整持久化状态，或某个作用域的投影视图。"""

    nodes: List[KGEntity] = Field(default_factory=list)
    links: List[KGRelation] = Field(default_factory=list)

    @classmethod
    def empty(cls) -> "KnowledgeGraph":
        return cls()

    def node_ids(self) -> set[str]:
        return {node.id for node in self.nodes}

    def labels_by_id(self) -> dict[str, str]:
        return {node.id: node.label for node in self.nodes}


class CandidateEntity(BaseModel):
    """抽取协作方返回的候选实体。"""

    label: str
    type: EntityType


class CandidateRelation(BaseModel):
    """抽取协作方返回的候选关系，source/target 为实体 label。"""

    source: str
    target: str
    relation: str


class ExtractionResult(BaseModel):
    entities: List[CandidateEntity] = Field(default_factory=list)
    relations: List[CandidateRelation] = Field(default_factory=list)


@dataclass
class NodePosition:
    """布局坐标，仅存在于内存中，不持久化。"""

    id: str
    x: float
    y: float
    vx: float = 0.0
    vy: float = 0.0

    def copy(self) -> "NodePosition":
        return NodePosition(id=self.id, x=self.x, y=self.y, vx=self.vx, vy=self.vy)


class RetrievalResult(BaseModel):
    nodes: List[KGEntity] = Field(default_factory=list)
    links: List[KGRelation] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.nodes and not self.links


class ExtractionRequest(BaseModel):
    text: str = Field(..., min_length=1)
    scope_id: str = Field(GLOBAL_SCOPE, min_length=1)


class MergeRequest(BaseModel):
    entities: List[dict] = Field(default_factory=list)
    relations: List[dict] = Field(default_factory=list)
    scope_id: str = Field(GLOBAL_SCOPE, min_length=1)


class MergeResponse(BaseModel):
    changed: bool


class RetrievalRequest(BaseModel):
    query: str
    scope_id: Optional[str] = None
    mode: Optional[str] = None


class RetrievalResponse(BaseModel):
    nodes: List[KGEntity] = Field(default_factory=list)
    links: List[KGRelation] = Field(default_factory=list)
    highlight_ids: List[str] = Field(default_factory=list)
    context: str = ""
