"""键值 Blob 存储：图谱整体序列化后存放在单个命名 key 下。"""

from __future__ import annotations

import base64
from pathlib import Path
from typing import Protocol

import kuzu


class BlobStore(Protocol):
    def get(self, key: str) -> bytes | None: ...

    def set(self, key: str, value: bytes) -> None: ...


class InMemoryBlobStore:
    """进程内实现，用于测试与临时会话。"""

    def __init__(self, initial: dict[str, bytes] | None = None) -> None:
        self._blobs: dict[str, bytes] = dict(initial or {})

    def get(self, key: str) -> bytes | None:
        return self._blobs.get(key)

    def set(self, key: str, value: bytes) -> None:
        self._blobs[key] = bytes(value)


class KuzuBlobStore:
    """封装 Kùzu 的单表键值存储。"""

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.db = kuzu.Database(str(self.db_path))
        self.conn = kuzu.Connection(self.db)
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        self.conn.execute(
            """
            CREATE NODE TABLE IF NOT EXISTS KnowledgeBlob(
                name STRING,
                payload STRING,
                PRIMARY KEY (name)
            );
            """
        )

    def get(self, key: str) -> bytes | None:
        result = self.conn.execute(
            "MATCH (b:KnowledgeBlob) WHERE b.name = $name RETURN b.payload",
            {"name": key},
        )
        rows = [row[0] for row in result]
        if not rows or rows[0] is None:
            return None
        return base64.b64decode(rows[0])

    def set(self, key: str, value: bytes) -> None:
        encoded = base64.b64encode(value).decode("ascii")
        self.conn.execute(
            "MERGE (b:KnowledgeBlob {name: $name}) "
            "ON CREATE SET b.payload = $payload "
            "ON MATCH SET b.payload = $payload",
            {"name": key, "payload": encoded},
        )
