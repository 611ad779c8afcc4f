"""Process-wide ingestion engine (built on first use)."""

from __future__ import annotations

import threading

from convoy.bootstrap import build_engine
from convoy.ingestion.engine import IngestionEngine
from convoy.settings import Settings

_engine: IngestionEngine | None = None
_engine_lock = threading.Lock()


def get_engine() -> IngestionEngine:
    """Get the engine instance (allows test injection via set_engine)."""
    global _engine
    if _engine is None:
        with _engine_lock:
            if _engine is None:
                _engine = build_engine(Settings.from_env())
    return _engine


def set_engine(engine: IngestionEngine | None) -> None:
    global _engine
    with _engine_lock:
        _engine = engine


def close_engine() -> None:
    """Shut down the engine's worker pool, if one was built."""
    global _engine
    with _engine_lock:
        engine, _engine = _engine, None
    if engine is not None:
        engine.close()
