"""
Tests pour la réconciliation de l'index dérivé et l'outbox.

Ce module teste la déduplication des entrées publiées, la mise en file des échecs et le rejeu
(succès, échec compté, abandon par TTL ou nombre de tentatives).
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from content_assistant.domain.content_version import NewContentVersion
from content_assistant.domain.knowledge import KnowledgeFilter, KnowledgeSource, NewKnowledgeEntry
from content_assistant.infra.repo.content_version_repo import ContentVersionRepo
from content_assistant.infra.repo.db import session_scope
from content_assistant.services.kb_sync import (
    KnowledgeSyncOutbox,
    KnowledgeSyncReconciler,
    OutboxItem,
)
from tests.fakes import FakeEmbeddings, FlakyStore

PROJECT = "p1"
SESSION = "s1"
MAX_ATTEMPTS = 2


def _published_filter() -> KnowledgeFilter:
    return KnowledgeFilter(
        project_id=PROJECT, session_id=SESSION, source=KnowledgeSource.PUBLISHED_CONTENT
    )


async def _published_version(session_factory, content: str = "texte publié"):
    async with session_scope(session_factory) as session:
        repo = ContentVersionRepo(session)
        version = await repo.insert(
            NewContentVersion(
                session_id=SESSION, project_id=PROJECT, title="T", author="A", content=content
            ),
            1,
        )
        return await repo.set_published(version.id, True)


@pytest.mark.asyncio
async def test_reconcile_inserts_then_reports_unchanged(session_factory) -> None:
    store = FlakyStore()
    outbox = KnowledgeSyncOutbox(session_factory)
    reconciler = KnowledgeSyncReconciler(session_factory, store, FakeEmbeddings(), outbox)
    await _published_version(session_factory)
    assert await reconciler.reconcile(PROJECT, SESSION) == "inserted"
    assert await reconciler.reconcile(PROJECT, SESSION) == "unchanged"


@pytest.mark.asyncio
async def test_reconcile_removes_duplicates(session_factory) -> None:
    """Plusieurs entrées publiées pour le couple: une seule subsiste, alignée sur la version."""
    store = FlakyStore()
    outbox = KnowledgeSyncOutbox(session_factory)
    reconciler = KnowledgeSyncReconciler(session_factory, store, FakeEmbeddings(), outbox)
    version = await _published_version(session_factory)
    for text in ("doublon 1", "doublon 2"):
        await store.insert(
            NewKnowledgeEntry(
                project_id=PROJECT,
                session_id=SESSION,
                content=text,
                source=KnowledgeSource.PUBLISHED_CONTENT,
                embedding=[1.0],
            )
        )
    assert await reconciler.reconcile(PROJECT, SESSION) == "updated"
    entries = await store.list_entries(_published_filter())
    assert len(entries) == 1
    assert entries[0].content == version.content
    assert entries[0].metadata["content_version_id"] == version.id


@pytest.mark.asyncio
async def test_reconcile_without_published_version_deletes(session_factory) -> None:
    store = FlakyStore()
    reconciler = KnowledgeSyncReconciler(
        session_factory, store, FakeEmbeddings(), KnowledgeSyncOutbox(session_factory)
    )
    await store.insert(
        NewKnowledgeEntry(
            project_id=PROJECT,
            session_id=SESSION,
            content="orphelin",
            source=KnowledgeSource.PUBLISHED_CONTENT,
            embedding=[1.0],
        )
    )
    assert await reconciler.reconcile(PROJECT, SESSION) == "deleted"
    assert await store.count(_published_filter()) == 0


@pytest.mark.asyncio
async def test_enqueue_is_unique_per_pair(session_factory) -> None:
    """Une seule ligne d'outbox par couple (projet, session)."""
    outbox = KnowledgeSyncOutbox(session_factory)
    await outbox.enqueue(PROJECT, SESSION, "publish", "boom")
    await outbox.enqueue(PROJECT, SESSION, "unpublish", "boom again")
    items = await outbox.pending()
    assert len(items) == 1
    assert items[0].reason == "unpublish"
    assert items[0].last_error == "boom again"


@pytest.mark.asyncio
async def test_sync_or_enqueue_never_raises(session_factory) -> None:
    store = FlakyStore()
    store.failing.add("delete")
    outbox = KnowledgeSyncOutbox(session_factory)
    reconciler = KnowledgeSyncReconciler(session_factory, store, FakeEmbeddings(), outbox)
    assert await reconciler.sync_or_enqueue(PROJECT, SESSION, "unpublish") is False
    assert await outbox.size() == 1


@pytest.mark.asyncio
async def test_replay_counts_failures_then_drops(session_factory) -> None:
    """Échec: tentative comptée; au-delà du maximum, l'élément est abandonné."""
    store = FlakyStore()
    store.failing.add("delete")
    outbox = KnowledgeSyncOutbox(session_factory, max_attempts=MAX_ATTEMPTS)
    reconciler = KnowledgeSyncReconciler(session_factory, store, FakeEmbeddings(), outbox)
    await outbox.enqueue(PROJECT, SESSION, "unpublish")

    first = await reconciler.replay()
    assert (first.succeeded, first.failed, first.dropped) == (0, 1, 0)
    second = await reconciler.replay()
    assert second.failed == 1
    assert (await outbox.pending())[0].attempts == MAX_ATTEMPTS

    third = await reconciler.replay()
    assert third.dropped == 1
    assert await outbox.size() == 0


@pytest.mark.asyncio
async def test_new_failure_resets_exhausted_item(session_factory) -> None:
    """Un nouvel échec sur un couple épuisé est rejoué, pas abandonné."""
    store = FlakyStore()
    await store.insert(
        NewKnowledgeEntry(
            project_id=PROJECT,
            session_id=SESSION,
            content="contenu dépublié",
            source=KnowledgeSource.PUBLISHED_CONTENT,
            embedding=[1.0],
        )
    )
    store.failing.add("delete")
    outbox = KnowledgeSyncOutbox(session_factory, max_attempts=MAX_ATTEMPTS)
    reconciler = KnowledgeSyncReconciler(session_factory, store, FakeEmbeddings(), outbox)
    await outbox.enqueue(PROJECT, SESSION, "unpublish")
    await reconciler.replay()
    await reconciler.replay()
    assert (await outbox.pending())[0].attempts == MAX_ATTEMPTS

    assert await reconciler.sync_or_enqueue(PROJECT, SESSION, "unpublish") is False
    assert (await outbox.pending())[0].attempts == 0

    store.failing.clear()
    report = await reconciler.replay()
    assert (report.succeeded, report.failed, report.dropped) == (1, 0, 0)
    assert await store.count(_published_filter()) == 0
    assert await outbox.size() == 0


@pytest.mark.asyncio
async def test_replay_drops_expired_items(session_factory) -> None:
    outbox = KnowledgeSyncOutbox(session_factory, ttl_s=0)
    reconciler = KnowledgeSyncReconciler(session_factory, FlakyStore(), FakeEmbeddings(), outbox)
    await outbox.enqueue(PROJECT, SESSION, "publish")
    report = await reconciler.replay()
    assert report.dropped == 1
    assert await outbox.size() == 0


def test_is_expired_rules() -> None:
    outbox = KnowledgeSyncOutbox(session_factory=None, max_attempts=3, ttl_s=60)
    now = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
    fresh = OutboxItem(id=1, project_id=PROJECT, session_id=SESSION, reason="r", created_at=now)
    assert outbox.is_expired(fresh, now) is False
    old = fresh.model_copy(update={"created_at": now - timedelta(seconds=61)})
    assert outbox.is_expired(old, now) is True
    exhausted = fresh.model_copy(update={"attempts": 3})
    assert outbox.is_expired(exhausted, now) is True
