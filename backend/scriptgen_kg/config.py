"""知识图谱引擎配置：读取 .env 文件与系统环境变量，系统环境优先."""
from __future__ import annotations

import os
from pathlib import Path

_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"


def _load_env_file(path: Path = _ENV_PATH) -> None:
    """读取 .env 文件到 os.environ，不覆盖已存在的环境变量."""
    if not path.exists():
        return
    for raw in path.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if not key or key in os.environ:
            continue
        os.environ[key] = value.strip().strip('"').strip("'")


def _get_positive_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if value <= 0:
        raise ValueError(f"{name} must be > 0")
    return value


_load_env_file()

TOPONE_API_KEY: str | None = os.getenv("TOPONE_API_KEY")
TOPONE_BASE_URL: str = os.getenv("TOPONE_BASE_URL", "https://api.toponeapi.top")
TOPONE_DEFAULT_MODEL: str = os.getenv(
    "TOPONE_DEFAULT_MODEL", "gemini-3-pro-preview-11-2025"
)
TOPONE_SECONDARY_MODEL: str = os.getenv("TOPONE_SECONDARY_MODEL", "gemini-2.5-flash")
try:
    TOPONE_TIMEOUT_SECONDS: float = float(os.getenv("TOPONE_TIMEOUT_SECONDS", "60"))
except ValueError:
    TOPONE_TIMEOUT_SECONDS = 60.0

KG_STORAGE_KEY: str = os.getenv("KG_STORAGE_KEY", "scriptgen_kg_v1")
KG_DB_PATH: str = os.getenv("KG_DB_PATH", str(Path("data") / "knowledge.db"))

# 抽取请求只携带文本前缀，过短的文本不值得一次模型调用
KG_EXTRACTION_MAX_CHARS: int = _get_positive_int("KG_EXTRACTION_MAX_CHARS", 3000)
KG_EXTRACTION_MIN_CHARS: int = _get_positive_int("KG_EXTRACTION_MIN_CHARS", 50)

KG_CONTEXT_MAX_TRIPLES: int = _get_positive_int("KG_CONTEXT_MAX_TRIPLES", 15)
KG_LAYOUT_ITERATIONS: int = _get_positive_int("KG_LAYOUT_ITERATIONS", 100)
