from __future__ import annotations

import asyncio

from .adapters.firebase_auth import FirebaseAuthProvider
from .config import Settings, load_settings
from .core.storage import JSONDocumentStore
from .data.store import AppStateStore
from .logging_config import setup_logging


def build_store(settings: Settings) -> AppStateStore:
    """Wire the configured collaborators into a fresh store."""
    documents = JSONDocumentStore(path=settings.data_path)
    identity = FirebaseAuthProvider(settings.firebase_api_key)
    return AppStateStore(
        documents,
        identity,
        notification_limit=settings.notification_limit,
    )


def main() -> int:
    settings = load_settings()
    log = setup_logging(settings.log_level)
    if not settings.firebase_api_key:
        log.error(
            "MOODBOARD_FIREBASE_API_KEY is not set. "
            "Export it in your environment before running."
        )
        return 2
    store = build_store(settings)

    async def runner() -> int:
        await store.start()
        unsubscribe = store.subscribe_to_vibes()
        log.info(
            "Store ready: %s, %d vibes in feed",
            store.state.status.value,
            len(store.vibes),
        )
        unsubscribe()
        await store.close()
        await store.identity.close()
        return 0

    return asyncio.run(runner())


if __name__ == "__main__":
    raise SystemExit(main())
