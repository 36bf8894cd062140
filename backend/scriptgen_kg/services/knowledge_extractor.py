"""知识抽取：调用生成模型，把剧本/创意文本解析为候选实体与关系。"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping

import httpx
from pydantic import ValidationError

from scriptgen_kg.config import KG_EXTRACTION_MAX_CHARS, KG_EXTRACTION_MIN_CHARS
from scriptgen_kg.errors import ExtractionError
from scriptgen_kg.models import (
    CandidateEntity,
    CandidateRelation,
    EntityType,
    ExtractionResult,
)
from scriptgen_kg.services.topone_client import ToponeClient

logger = logging.getLogger(__name__)

_CATEGORY_HINTS: dict[EntityType, str] = {
    EntityType.CHARACTER: "人物",
    EntityType.LOCATION: "场景/地点",
    EntityType.THEME: "主题",
    EntityType.STYLE: "风格",
    EntityType.OBJECT: "关键道具",
    EntityType.LIGHTING: "灯光/色调 - 例如：赛博霓虹、低调光、自然光",
    EntityType.CAMERA: "运镜/机位 - 例如：手持跟拍、上帝视角、特写",
}


def build_prompt(text: str, max_chars: int = KG_EXTRACTION_MAX_CHARS) -> str:
    categories = "\n".join(
        f"  - {entity_type.value} ({hint})"
        for entity_type, hint in _CATEGORY_HINTS.items()
    )
    return f"""你是一位专业的知识图谱工程师。
请从下方的影视剧本/创意文本中提取关键实体和关系，构建知识图谱。

请特别关注以下两类关系，并使用中文输出：
1. **人物关系 (Character Relationships)**：角色之间的社会关系或情感连接。
2. **视听语言 (Visual Language)**：场景的灯光氛围、镜头运动方式与剧情的关系。

实体类型 (Types) 请严格使用以下分类:
{categories}

输出必须是纯 JSON 格式：
{{
  "entities": [{{"label": "实体名(中文)", "type": "TYPE"}}],
  "relations": [{{"source": "实体名1", "target": "实体名2", "relation": "关系名(中文)"}}]
}}

文本内容:
{text[:max_chars]}
"""


def _strip_code_fence(text: str) -> str:
    return text.replace("```json", "").replace("```", "").strip()


def _load_json_object(text: str) -> Any:
    candidate = _strip_code_fence(text)
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        pass
    start = candidate.find("{")
    end = candidate.rfind("}")
    if start == -1 or end <= start:
        raise ExtractionError("model output contains no JSON object")
    try:
        return json.loads(candidate[start : end + 1])
    except json.JSONDecodeError as exc:
        raise ExtractionError(f"invalid JSON model output: {exc.msg}") from exc


def _validate_items(items: Any, model: type) -> list:
    if not isinstance(items, list):
        return []
    valid = []
    for item in items:
        try:
            valid.append(model.model_validate(item))
        except ValidationError:
            logger.debug("drop malformed %s: %r", model.__name__, item)
    return valid


def parse_extraction_payload(text: str) -> ExtractionResult:
    """尽力解析模型输出；单条坏数据被丢弃，整体不可解析时抛出 ExtractionError。"""
    payload = _load_json_object(text)
    if not isinstance(payload, Mapping):
        raise ExtractionError("model output is not a JSON object")
    if "entities" not in payload or "relations" not in payload:
        raise ExtractionError("model output lacks entities/relations")
    return ExtractionResult(
        entities=_validate_items(payload["entities"], CandidateEntity),
        relations=_validate_items(payload["relations"], CandidateRelation),
    )


class KnowledgeExtractor:
    """外部抽取协作方的适配层，失败时返回 None 而不是抛出。"""

    def __init__(
        self,
        client: ToponeClient,
        *,
        min_chars: int = KG_EXTRACTION_MIN_CHARS,
        max_chars: int = KG_EXTRACTION_MAX_CHARS,
    ) -> None:
        self.client = client
        self.min_chars = min_chars
        self.max_chars = max_chars

    async def extract(self, text: str) -> ExtractionResult | None:
        if not text or len(text) < self.min_chars:
            return None
        if not self.client.configured:
            logger.info("extraction skipped: TOPONE_API_KEY not configured")
            return None

        prompt = build_prompt(text, self.max_chars)
        try:
            raw = await self.client.generate_text(
                prompt, response_mime_type="application/json"
            )
            result = parse_extraction_payload(raw or "{}")
        except (httpx.HTTPError, ValueError, KeyError, ExtractionError) as exc:
            logger.warning("knowledge extraction failed, graph unchanged: %s", exc)
            return None

        logger.info(
            "extracted %d entities, %d relations",
            len(result.entities),
            len(result.relations),
        )
        return result
