from .config import Settings
from .database import Database, PostgresAccountStore
from .memory import InMemoryAccountStore
from .store import AccountStore


def build_store(settings: Settings) -> AccountStore:
    """Store handle for the configured backend; callers own its lifecycle"""
    if settings.store_backend == "memory":
        timeout = settings.lock_timeout_ms / 1000 if settings.lock_timeout_ms else None
        return InMemoryAccountStore(lock_timeout=timeout)
    if settings.store_backend == "postgres":
        database = Database(
            settings.database_url,
            min_size=settings.pool_min_size,
            max_size=settings.pool_max_size
        )
        return PostgresAccountStore(database, lock_timeout_ms=settings.lock_timeout_ms)
    raise ValueError(f"unknown store backend {settings.store_backend!r}")
