"""Account-linking snapshots.

Linking a second provider means briefly authenticating as that provider,
which replaces the store's session. A snapshot taken beforehand lets the
caller put the primary identity back once the link call has completed.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from authclient.application.session_store import SessionStore
from authclient.domain.entities import NormalizedSession

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class LinkingSnapshot:
    session: NormalizedSession | None
    provider: str | None

    @property
    def is_complete(self) -> bool:
        return self.session is not None and self.provider is not None


def create_linking_snapshot(store: SessionStore) -> LinkingSnapshot:
    session = store.session
    return LinkingSnapshot(
        session=session.clone() if session is not None else None,
        provider=store.current_provider,
    )


async def restore_linking_snapshot(
    store: SessionStore,
    snapshot: LinkingSnapshot | None,
    linked_provider: str | None = None,
) -> bool:
    """Restore the pre-linking identity; returns whether a session was restored.

    Linking the provider the snapshot was taken under keeps the current
    session and only refreshes the profile.
    """
    if snapshot is None or not snapshot.is_complete:
        return False

    if linked_provider is not None and linked_provider == snapshot.provider:
        try:
            await store.fetch_profile()
        except Exception as exc:
            logger.warning("linking_profile_refresh_failed", provider=linked_provider, error=str(exc))
        return False

    try:
        restored = await store.set_session(snapshot.session.clone(), snapshot.provider)
    except Exception as exc:
        logger.warning("linking_restore_failed", provider=snapshot.provider, error=str(exc))
        return False
    if not restored:
        logger.warning("linking_restore_rejected", provider=snapshot.provider)
        return False

    try:
        await store.fetch_profile()
    except Exception as exc:
        logger.warning("linking_profile_refresh_failed", provider=snapshot.provider, error=str(exc))
    logger.info("linking_snapshot_restored", provider=snapshot.provider, linked=linked_provider)
    return True
