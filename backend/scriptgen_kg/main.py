"""FastAPI 入口，暴露知识图谱的合并、检索与布局接口。"""

from __future__ import annotations

import json
import logging
from functools import lru_cache
from typing import Optional

from fastapi import (
    Depends,
    FastAPI,
    HTTPException,
    Request,
    WebSocket,
    WebSocketDisconnect,
)
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from scriptgen_kg.config import KG_DB_PATH
from scriptgen_kg.logic.knowledge_manager import KnowledgeManager, LayoutSessions
from scriptgen_kg.models import (
    ExtractionRequest,
    KnowledgeGraph,
    MergeRequest,
    MergeResponse,
    RetrievalRequest,
    RetrievalResponse,
)
from scriptgen_kg.services.graph_view import GraphFrame, build_frame
from scriptgen_kg.services.knowledge_extractor import KnowledgeExtractor
from scriptgen_kg.services.layout import CategoryFilter, Viewport
from scriptgen_kg.services.retrieval import MatchMode, highlight_ids
from scriptgen_kg.services.topone_client import ToponeClient
from scriptgen_kg.storage.blob import KuzuBlobStore
from scriptgen_kg.storage.graph import GraphStore

app = FastAPI(title="ScriptGen Knowledge Graph API", version="0.1.0")

logger = logging.getLogger(__name__)


class LayoutPayload(BaseModel):
    scope_id: Optional[str] = None
    category: CategoryFilter = CategoryFilter.ALL
    width: float = Field(800, gt=0)
    height: float = Field(600, gt=0)
    query: Optional[str] = None


def _normalize_unhandled_exception(exc: Exception) -> tuple[int, str]:
    if isinstance(exc, (ValueError, KeyError, ValidationError, json.JSONDecodeError)):
        return 422, str(exc) or "invalid request payload"
    detail = str(exc) or exc.__class__.__name__
    return 503, f"service unavailable: {detail}"


@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    if isinstance(exc, HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
    status_code, detail = _normalize_unhandled_exception(exc)
    logger.exception("Unhandled exception")
    return JSONResponse(status_code=status_code, content={"detail": detail})


@lru_cache(maxsize=1)
def get_graph_store() -> GraphStore:
    """GraphStore 单例，避免重复打开数据库。"""
    return GraphStore(KuzuBlobStore(KG_DB_PATH))


@lru_cache(maxsize=1)
def get_topone_client() -> ToponeClient:
    return ToponeClient()


def get_knowledge_manager(
    store: GraphStore = Depends(get_graph_store),
    client: ToponeClient = Depends(get_topone_client),
) -> KnowledgeManager:
    return KnowledgeManager(store=store, extractor=KnowledgeExtractor(client))


_layout_sessions: LayoutSessions | None = None


def get_layout_sessions(store: GraphStore = Depends(get_graph_store)) -> LayoutSessions:
    """布局会话单例，节点坐标在请求之间保留；store 替换时关闭旧会话。"""
    global _layout_sessions
    if _layout_sessions is None or _layout_sessions.store is not store:
        if _layout_sessions is not None:
            _layout_sessions.close()
        _layout_sessions = LayoutSessions(store)
    return _layout_sessions


def _parse_mode(raw: str | None) -> MatchMode:
    if raw is None:
        return MatchMode.AUTO
    try:
        return MatchMode(raw)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=f"unknown match mode: {raw}") from exc


@app.get("/api/v1/kg", response_model=KnowledgeGraph)
async def scoped_graph_endpoint(
    scope_id: Optional[str] = None,
    manager: KnowledgeManager = Depends(get_knowledge_manager),
) -> KnowledgeGraph:
    return manager.scoped_view(scope_id)


@app.post("/api/v1/kg/merge", response_model=MergeResponse)
async def merge_endpoint(
    payload: MergeRequest,
    manager: KnowledgeManager = Depends(get_knowledge_manager),
) -> MergeResponse:
    changed = manager.merge(payload.entities, payload.relations, payload.scope_id)
    return MergeResponse(changed=changed)


@app.post("/api/v1/kg/extract", response_model=MergeResponse)
async def extract_endpoint(
    payload: ExtractionRequest,
    manager: KnowledgeManager = Depends(get_knowledge_manager),
) -> MergeResponse:
    changed = await manager.ingest(payload.text, payload.scope_id)
    return MergeResponse(changed=changed)


@app.post("/api/v1/kg/retrieve", response_model=RetrievalResponse)
async def retrieve_endpoint(
    payload: RetrievalRequest,
    manager: KnowledgeManager = Depends(get_knowledge_manager),
) -> RetrievalResponse:
    return manager.retrieve(payload.query, payload.scope_id, _parse_mode(payload.mode))


@app.post("/api/v1/kg/layout", response_model=GraphFrame)
async def layout_endpoint(
    payload: LayoutPayload,
    sessions: LayoutSessions = Depends(get_layout_sessions),
) -> GraphFrame:
    engine = sessions.get(
        payload.scope_id,
        Viewport(payload.width, payload.height),
        payload.category,
    )
    highlights = None
    if payload.query:
        graph = sessions.store.scoped_view(payload.scope_id)
        highlights = highlight_ids(graph, payload.query)
    return build_frame(engine, highlights)


@app.websocket("/ws/kg/layout")
async def layout_socket(
    websocket: WebSocket,
    sessions: LayoutSessions = Depends(get_layout_sessions),
):
    """拖拽协议：drag_start / drag_move / drag_end，每条消息回传最新帧。"""
    await websocket.accept()
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError as exc:
                await websocket.send_json({"error": f"invalid JSON: {exc}"})
                continue
            if not isinstance(message, dict):
                await websocket.send_json({"error": "message must be a JSON object"})
                continue
            engine = sessions.get(message.get("scope_id"))
            action = message.get("action")
            try:
                if action == "drag_start":
                    engine.start_drag(str(message["node_id"]))
                elif action == "drag_move":
                    engine.drag_to(float(message["x"]), float(message["y"]))
                elif action == "drag_end":
                    engine.end_drag()
                elif action != "frame":
                    raise ValueError(f"unknown action: {action}")
            except (KeyError, TypeError, ValueError) as exc:
                await websocket.send_json({"error": str(exc)})
                continue
            await websocket.send_json(build_frame(engine).model_dump(mode="json"))
    except WebSocketDisconnect:
        logger.debug("layout socket closed")
