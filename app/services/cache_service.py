"""
Cache Service

Thin read-mostly cache used for workflow template snapshots:
  - Template snapshot cache (TEMPLATE_CACHE_TTL, default 5 min)
  - Prefix invalidation on template edits

Uses Redis in production (via REDIS_URL), falls back to
a simple in-memory dict for development/testing.
"""

import json
import logging
import os
import threading
import time

logger = logging.getLogger(__name__)

# ── In-memory fallback ───────────────────────────────────────────────────

_memory_store: dict = {}  # key → (value_json, expire_ts)
_memory_lock = threading.Lock()


class _MemoryBackend:
    """Simple dict cache for dev/testing. Safe to share across worker threads."""

    def get(self, key):
        with _memory_lock:
            entry = _memory_store.get(key)
            if entry is None:
                return None
            val, expires = entry
            if expires and time.time() > expires:
                _memory_store.pop(key, None)
                return None
            return val

    def setex(self, key, ttl_seconds, value):
        with _memory_lock:
            _memory_store[key] = (value, time.time() + ttl_seconds)

    def delete(self, *keys):
        with _memory_lock:
            for k in keys:
                _memory_store.pop(k, None)

    def keys(self, pattern):
        """Simple glob matching for 'prefix*' patterns."""
        with _memory_lock:
            if pattern.endswith("*"):
                prefix = pattern[:-1]
                return [k for k in _memory_store if k.startswith(prefix)]
            return [k for k in _memory_store if k == pattern]

    def flushdb(self):
        with _memory_lock:
            _memory_store.clear()

    def ping(self):
        return True


# ── Singleton cache backend ──────────────────────────────────────────────

_backend = None


def _get_backend():
    """Lazy-initialise Redis or fall back to in-memory."""
    global _backend
    if _backend is not None:
        return _backend

    redis_url = os.getenv("REDIS_URL")
    if redis_url and not redis_url.startswith("memory://"):
        try:
            import redis as _redis
            _backend = _redis.from_url(redis_url, decode_responses=True)
            _backend.ping()
            logger.info("Cache: using Redis at %s", redis_url.split("@")[-1])
        except Exception as exc:
            logger.warning("Redis unavailable (%s) — falling back to memory cache", exc)
            _backend = _MemoryBackend()
    else:
        _backend = _MemoryBackend()
    return _backend


# ── Default TTLs ─────────────────────────────────────────────────────────

TEMPLATE_TTL = 300   # 5 minutes
DEFAULT_TTL = 300


# ── Key builders ─────────────────────────────────────────────────────────

TEMPLATE_PREFIX = "wftpl:"


def template_key(workflow_type):
    return f"{TEMPLATE_PREFIX}{workflow_type}"


# ── Public API ───────────────────────────────────────────────────────────


def get_cached(key, ttl=DEFAULT_TTL, loader=None):
    """Generic cache-aside.  If *loader* is provided, it's called on miss
    and the result is cached."""
    be = _get_backend()
    raw = be.get(key)
    if raw is not None:
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            pass
    if loader is None:
        return None
    value = loader()
    if value is not None:
        be.setex(key, ttl, json.dumps(value))
    return value


def set_cached(key, value, ttl=DEFAULT_TTL):
    """Generic set."""
    _get_backend().setex(key, ttl, json.dumps(value))


def delete_cached(key):
    """Generic delete."""
    _get_backend().delete(key)


def delete_prefix(prefix):
    """Remove every key starting with *prefix*. Returns the number removed."""
    be = _get_backend()
    keys = be.keys(f"{prefix}*")
    if keys:
        be.delete(*keys)
    return len(keys)


def clear_all():
    """Flush entire cache (use sparingly — mainly for testing)."""
    _get_backend().flushdb()


def health_check():
    """Return cache backend status."""
    try:
        be = _get_backend()
        be.ping()
        backend_type = "redis" if not isinstance(be, _MemoryBackend) else "memory"
        return {"status": "ok", "backend": backend_type}
    except Exception as exc:
        return {"status": "error", "detail": str(exc)}
