import json

import httpx
import pytest

from scriptgen_kg.errors import ExtractionError
from scriptgen_kg.models import EntityType
from scriptgen_kg.services.knowledge_extractor import (
    KnowledgeExtractor,
    build_prompt,
    parse_extraction_payload,
)
from scriptgen_kg.services.topone_client import ToponeClient

LONG_TEXT = "雨夜，张三独自走进废弃工厂，霓虹灯在积水里闪烁。镜头手持跟拍，他要找李四复仇。" * 3

PAYLOAD = {
    "entities": [
        {"label": "张三", "type": "CHARACTER"},
        {"label": "废弃工厂", "type": "LOCATION"},
    ],
    "relations": [{"source": "张三", "target": "废弃工厂", "relation": "潜入"}],
}


def _client_returning(text: str) -> ToponeClient:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]}
        )

    return ToponeClient(api_key="k", transport=httpx.MockTransport(handler))


def test_build_prompt_truncates_text_and_lists_categories():
    prompt = build_prompt("甲" * 5000, max_chars=3000)
    assert prompt.count("甲") == 3000
    for entity_type in EntityType:
        assert entity_type.value in prompt
    assert '"relations"' in prompt


def test_parse_plain_and_fenced_json():
    raw = json.dumps(PAYLOAD, ensure_ascii=False)
    for text in (raw, f"```json\n{raw}\n```", f"```\n{raw}\n```"):
        result = parse_extraction_payload(text)
        assert [e.label for e in result.entities] == ["张三", "废弃工厂"]
        assert result.relations[0].relation == "潜入"


def test_parse_locates_outermost_braces_in_chatter():
    raw = json.dumps(PAYLOAD, ensure_ascii=False)
    result = parse_extraction_payload(f"好的，以下是结果：{raw} 希望有帮助！")
    assert len(result.entities) == 2


def test_parse_drops_malformed_items_only():
    result = parse_extraction_payload(
        json.dumps(
            {
                "entities": [
                    {"label": "张三", "type": "CHARACTER"},
                    {"label": "怪物", "type": "MONSTER"},
                    {"type": "THEME"},
                ],
                "relations": [{"source": "张三", "target": "李四"}],
            }
        )
    )
    assert [e.label for e in result.entities] == ["张三"]
    assert result.relations == []


@pytest.mark.parametrize(
    "text",
    ["not json at all", "{broken", "[1, 2, 3]", '{"entities": []}', "{}"],
)
def test_parse_rejects_unusable_output(text):
    with pytest.raises(ExtractionError):
        parse_extraction_payload(text)


@pytest.mark.asyncio
async def test_extract_returns_candidates():
    extractor = KnowledgeExtractor(_client_returning(json.dumps(PAYLOAD)))
    result = await extractor.extract(LONG_TEXT)
    assert result is not None
    assert [e.type for e in result.entities] == [EntityType.CHARACTER, EntityType.LOCATION]


@pytest.mark.asyncio
async def test_extract_skips_short_text_without_calling_model(mocker):
    client = ToponeClient(api_key="k")
    call = mocker.patch.object(client, "generate_text", mocker.AsyncMock())
    extractor = KnowledgeExtractor(client)

    assert await extractor.extract("太短") is None
    assert await extractor.extract("") is None
    call.assert_not_awaited()


@pytest.mark.asyncio
async def test_extract_skips_without_api_key(mocker):
    client = ToponeClient(api_key="")
    call = mocker.patch.object(client, "generate_text", mocker.AsyncMock())

    assert await KnowledgeExtractor(client).extract(LONG_TEXT) is None
    call.assert_not_awaited()


@pytest.mark.asyncio
async def test_extract_sends_truncated_prompt_as_json_request(mocker):
    client = ToponeClient(api_key="k")
    call = mocker.patch.object(
        client, "generate_text", mocker.AsyncMock(return_value=json.dumps(PAYLOAD))
    )
    extractor = KnowledgeExtractor(client, max_chars=10)

    await extractor.extract(LONG_TEXT)

    prompt = call.await_args.args[0]
    assert LONG_TEXT[:10] in prompt
    assert LONG_TEXT[:11] not in prompt
    assert call.await_args.kwargs["response_mime_type"] == "application/json"


@pytest.mark.asyncio
async def test_extract_tolerates_garbage_and_http_failures():
    assert await KnowledgeExtractor(_client_returning("抱歉，我无法完成")).extract(LONG_TEXT) is None

    failing = ToponeClient(
        api_key="k",
        transport=httpx.MockTransport(lambda request: httpx.Response(503)),
    )
    assert await KnowledgeExtractor(failing).extract(LONG_TEXT) is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        [{"candidates": []}],
        {"candidates": ["oops"]},
        {"candidates": "oops"},
        {"candidates": [{"content": {"parts": ["x"]}}]},
        {"candidates": [{"content": ["x"]}]},
    ],
)
async def test_extract_returns_none_for_misshapen_response_body(body):
    client = ToponeClient(
        api_key="k",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json=body)),
    )
    assert await KnowledgeExtractor(client).extract(LONG_TEXT) is None
