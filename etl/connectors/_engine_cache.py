"""Thread-safe SQLAlchemy engine cache shared by database connectors."""

from threading import Lock
from typing import Any, Callable

from sqlalchemy.engine import Engine

from ._logging import get_logger

_CACHE_LOCK = Lock()
_ENGINE_CACHE: dict[tuple[str, tuple[tuple[str, str], ...]], Engine] = {}
LOGGER = get_logger("connectors.engine_cache")


def _cache_key(dialect: str, params: dict[str, Any]) -> tuple[str, tuple[tuple[str, str], ...]]:
    """Build a stable cache key from dialect name and normalized connection values."""
    normalized_items = tuple(sorted((str(key), str(value)) for key, value in params.items()))
    return dialect, normalized_items


def get_or_create_engine(
    dialect: str,
    params: dict[str, Any],
    factory: Callable[[], Engine],
    *,
    reuse: bool,
) -> Engine:
    """Return a cached engine, or build one; only cache it when reuse is enabled."""
    if not reuse:
        LOGGER.debug("Engine reuse disabled for %s, creating private engine", dialect)
        return factory()

    key = _cache_key(dialect, params)

    with _CACHE_LOCK:
        cached = _ENGINE_CACHE.get(key)
        if cached is not None:
            LOGGER.debug("Engine cache hit for %s", dialect)
            return cached

        engine = factory()
        _ENGINE_CACHE[key] = engine
        LOGGER.info("Engine cache miss for %s, new engine created", dialect)
        return engine


def is_cached(engine: Engine) -> bool:
    with _CACHE_LOCK:
        return any(cached is engine for cached in _ENGINE_CACHE.values())


def dispose_all_engines() -> None:
    """Dispose and clear all cached SQLAlchemy engines."""
    with _CACHE_LOCK:
        engines = list(_ENGINE_CACHE.values())
        _ENGINE_CACHE.clear()

    for engine in engines:
        engine.dispose()

    LOGGER.info("Disposed %s cached SQL engines", len(engines))
