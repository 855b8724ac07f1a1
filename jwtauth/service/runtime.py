from __future__ import annotations

import threading
from urllib.parse import urlparse, urlunparse

from jwtauth.config import get_settings, reset_settings_cache
from jwtauth.logging import get_logger
from jwtauth.service.auth import AuthService
from jwtauth.service.passwords import PasswordHasher, PasswordPolicy
from jwtauth.service.tokens import TokenIssuer
from jwtauth.storage.memory import MemoryStore
from jwtauth.storage.postgres import PostgresStore

logger = get_logger(__name__)


def _mask_url_password(url: str | None) -> str | None:
    """Replace the password component of a DSN with ``***`` for logging."""
    if not url:
        return url
    try:
        parsed = urlparse(url)
    except ValueError:
        return "***url_parse_error***"
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(
        (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
    )


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        store_type = "memory" if self.settings.use_memory_store else "postgres"
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )
        try:
            self.store = (
                MemoryStore()
                if self.settings.use_memory_store
                else PostgresStore(self.settings.database_url)
            )
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                database_url=_mask_url_password(self.settings.database_url),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise
        logger.info("runtime_store_initialized", store_type=store_type)

        self.hasher = PasswordHasher()
        self.policy = PasswordPolicy()
        self.issuer = TokenIssuer(self.settings)
        self.auth = AuthService(
            self.store,
            self.settings,
            hasher=self.hasher,
            policy=self.policy,
            issuer=self.issuer,
        )
        logger.info("runtime_init_completed", store_type=store_type)

    def close(self) -> None:
        self.store.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner.

    Double-checked locking: the unlocked read is the fast path, the locked
    re-check guards creation.
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        if runtime is not None:
            runtime.close()
        reset_settings_cache()
        runtime = Runtime()
        return runtime
