"""TopOne Gemini 接口封装：知识抽取所用的 generateContent 调用."""
from __future__ import annotations

from typing import Any, Mapping, Sequence

import httpx

from scriptgen_kg.config import (
    TOPONE_API_KEY,
    TOPONE_BASE_URL,
    TOPONE_DEFAULT_MODEL,
    TOPONE_SECONDARY_MODEL,
    TOPONE_TIMEOUT_SECONDS,
)


class ToponeClient:
    """轻量封装 TopOne API，默认使用 env 配置。"""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        default_model: str | None = None,
        secondary_model: str | None = None,
        timeout_seconds: float | None = None,
        allowed_models: Sequence[str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = TOPONE_API_KEY if api_key is None else api_key
        self.base_url = base_url or TOPONE_BASE_URL
        self.default_model = default_model or TOPONE_DEFAULT_MODEL
        self.secondary_model = secondary_model or TOPONE_SECONDARY_MODEL
        self.timeout_seconds = timeout_seconds or TOPONE_TIMEOUT_SECONDS
        self.allowed_models = tuple(
            allowed_models or (self.default_model, self.secondary_model)
        )
        self.transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    @staticmethod
    def extract_text(payload: Any) -> str:
        """拼接首个候选的文本块，跳过 thought 标记的思考过程.

        响应结构不符合预期时抛出 ValueError.
        """
        if not isinstance(payload, Mapping):
            raise ValueError(f"unexpected response body: {type(payload).__name__}")
        candidates = payload.get("candidates") or []
        if not isinstance(candidates, list):
            raise ValueError("unexpected candidates field in response")
        if not candidates:
            return ""
        candidate = candidates[0]
        if not isinstance(candidate, Mapping):
            raise ValueError("unexpected candidate entry in response")
        content = candidate.get("content") or {}
        parts = content.get("parts") if isinstance(content, Mapping) else None
        if not isinstance(parts, list):
            return ""
        texts = []
        for part in parts:
            if not isinstance(part, Mapping) or part.get("thought"):
                continue
            text = part.get("text")
            if isinstance(text, str):
                texts.append(text)
        return "".join(texts)

    def _validate_model(self, model: str) -> str:
        if model not in self.allowed_models:
            raise ValueError(f"Unsupported model: {model}")
        return model

    def _ensure_key(self) -> str:
        if not self.api_key:
            raise ValueError("TOPONE_API_KEY is required for real LLM calls")
        return self.api_key

    @staticmethod
    def _build_payload(
        prompt: str,
        *,
        system_instruction: str | None,
        response_mime_type: str | None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}]
        }
        if system_instruction:
            payload["systemInstruction"] = {"parts": [{"text": system_instruction}]}
        if response_mime_type:
            payload["generationConfig"] = {"responseMimeType": response_mime_type}
        return payload

    async def generate_content(
        self,
        prompt: str,
        *,
        system_instruction: str | None = None,
        response_mime_type: str | None = None,
        model: str | None = None,
    ) -> dict[str, Any]:
        """调用 generateContent 接口并返回原始 JSON 响应."""
        model_name = self._validate_model(model or self.default_model)
        api_key = self._ensure_key()
        payload = self._build_payload(
            prompt,
            system_instruction=system_instruction,
            response_mime_type=response_mime_type,
        )

        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout_seconds,
            transport=self.transport,
        ) as client:
            response = await client.post(
                f"/v1beta/models/{model_name}:generateContent",
                params={"key": api_key},
                json=payload,
            )
            response.raise_for_status()
            return response.json()

    async def generate_text(self, prompt: str, **kwargs: Any) -> str:
        return self.extract_text(await self.generate_content(prompt, **kwargs))
