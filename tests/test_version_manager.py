# ============================================================
# Tests : tests/test_version_manager.py
# Objet  : Cycle de vie des versions (création, publication, dépublication, édition).
# ============================================================
"""
Tests pour le gestionnaire de versions de contenu.

Les versions sont persistées en SQLite (fichier temporaire); l'index dérivé `published_content`
vit dans un store mémoire, éventuellement mis en échec pour vérifier la mise en outbox.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import pytest

from content_assistant.domain.errors import ValidationError, VersionNotFoundError
from content_assistant.domain.knowledge import KnowledgeFilter, KnowledgeSource
from content_assistant.domain.version_manager import ContentVersionManager
from content_assistant.infra.locks import SessionLockRegistry
from content_assistant.services.kb_sync import KnowledgeSyncOutbox, KnowledgeSyncReconciler
from tests.fakes import FakeEmbeddings, FlakyStore

PROJECT = "p1"
SESSION = "s1"
CONCURRENT_CREATES = 5
EXPECTED_TWO = 2


def _build(session_factory, store: FlakyStore | None = None):
    store = store or FlakyStore()
    outbox = KnowledgeSyncOutbox(session_factory, max_attempts=3, ttl_s=3600)
    reconciler = KnowledgeSyncReconciler(session_factory, store, FakeEmbeddings(), outbox)
    manager = ContentVersionManager(session_factory, SessionLockRegistry(timeout_s=5), reconciler)
    return manager, store, outbox


async def _create(manager: ContentVersionManager, content: str, session_id: str = SESSION):
    return await manager.create_version(
        session_id, PROJECT, None, f"Titre {content}", "Alice", content
    )


def _published_filter(session_id: str = SESSION) -> KnowledgeFilter:
    return KnowledgeFilter(
        project_id=PROJECT, session_id=session_id, source=KnowledgeSource.PUBLISHED_CONTENT
    )


@pytest.mark.asyncio
async def test_version_numbers_start_at_one_and_increase(session_factory) -> None:
    """Les numéros de version d'une session sont 1, 2, 3 et indépendants par session."""
    manager, _, _ = _build(session_factory)
    numbers = [(await _create(manager, f"v{i}")).version_number for i in range(3)]
    assert numbers == [1, 2, 3]
    other = await _create(manager, "autre", session_id="s2")
    assert other.version_number == 1
    first = await manager.get_version((await manager.list_versions(SESSION))[-1].id)
    assert first.published is False


@pytest.mark.asyncio
async def test_concurrent_creates_get_distinct_numbers(session_factory) -> None:
    """Des créations concurrentes sur une session obtiennent des numéros distincts et contigus."""
    manager, _, _ = _build(session_factory)
    created = await asyncio.gather(*(_create(manager, f"c{i}") for i in range(CONCURRENT_CREATES)))
    assert sorted(v.version_number for v in created) == list(range(1, CONCURRENT_CREATES + 1))


@pytest.mark.asyncio
async def test_create_rejects_missing_fields(session_factory) -> None:
    """Un titre vide est une erreur client."""
    manager, _, _ = _build(session_factory)
    with pytest.raises(ValidationError):
        await manager.create_version(SESSION, PROJECT, None, "", "Alice", "contenu")


@pytest.mark.asyncio
async def test_get_unknown_version_is_not_found(session_factory) -> None:
    manager, _, _ = _build(session_factory)
    with pytest.raises(VersionNotFoundError):
        await manager.get_version("inconnue")
    with pytest.raises(VersionNotFoundError):
        await manager.publish("inconnue")


@pytest.mark.asyncio
async def test_publish_supersedes_previous_publication(session_factory) -> None:
    """Publier v2 après v1 laisse une seule version publiée et une seule entrée dérivée."""
    manager, store, _ = _build(session_factory)
    v1 = await _create(manager, "premier jet")
    v2 = await _create(manager, "version finale")

    first = await manager.publish(v1.id, document_id="doc-1")
    assert first.version.published and first.unpublished_count == 0
    second = await manager.publish(v2.id, document_id="doc-2")
    assert second.unpublished_count == 1
    assert second.knowledge_synced is True

    versions = {v.id: v for v in await manager.list_versions(SESSION)}
    assert versions[v2.id].published is True
    assert versions[v1.id].published is False
    assert versions[v1.id].published_at is None

    entries = await store.list_entries(_published_filter())
    assert len(entries) == 1
    assert entries[0].content == "version finale"
    assert entries[0].metadata["content_version_id"] == v2.id
    assert entries[0].metadata["type"] == "published_content"
    assert entries[0].metadata["author"] == "Alice"
    assert await manager.existing_published_document_id(SESSION, PROJECT) == "doc-2"


@pytest.mark.asyncio
async def test_republish_is_idempotent(session_factory) -> None:
    """Republier la même version ne crée pas de doublon."""
    manager, store, _ = _build(session_factory)
    v1 = await _create(manager, "contenu stable")
    await manager.publish(v1.id)
    again = await manager.publish(v1.id)
    assert again.unpublished_count == 0
    assert len(await store.list_entries(_published_filter())) == 1


@pytest.mark.asyncio
async def test_published_at_is_kept_when_given(session_factory) -> None:
    manager, _, _ = _build(session_factory)
    v1 = await _create(manager, "daté")
    when = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
    result = await manager.publish(v1.id, published_at=when)
    assert result.version.published_at == when


@pytest.mark.asyncio
async def test_unpublish_all_previous_removes_derived_entry(session_factory) -> None:
    """Dépublier toutes les versions supprime l'entrée publiée de la session."""
    manager, store, _ = _build(session_factory)
    v1 = await _create(manager, "à retirer")
    await manager.publish(v1.id)
    result = await manager.unpublish_all_previous(SESSION, PROJECT)
    assert result.unpublished_count == 1
    assert result.knowledge_synced is True
    assert await store.list_entries(_published_filter()) == []
    assert await manager.published_versions(PROJECT) == []


@pytest.mark.asyncio
async def test_unpublish_with_exclusion_keeps_excluded(session_factory) -> None:
    manager, _, _ = _build(session_factory)
    v1 = await _create(manager, "un")
    v2 = await _create(manager, "deux")
    await manager.mark_published(v1.id)
    await manager.mark_published(v2.id)
    result = await manager.unpublish_all_previous(SESSION, PROJECT, exclude_version_id=v2.id)
    assert result.unpublished_count == 1
    assert [v.id for v in await manager.published_versions(PROJECT)] == [v2.id]


@pytest.mark.asyncio
async def test_mark_unpublished_removes_entry(session_factory) -> None:
    """mark_published(published=False) retire l'entrée quand plus rien n'est publié."""
    manager, store, _ = _build(session_factory)
    v1 = await _create(manager, "temporaire")
    await manager.publish(v1.id)
    version = await manager.mark_published(v1.id, published=False)
    assert version.published is False
    assert version.published_at is None
    assert await store.list_entries(_published_filter()) == []


@pytest.mark.asyncio
async def test_failed_kb_delete_still_unpublishes_and_enqueues(session_factory) -> None:
    """Un échec de l'index dérivé ne bloque pas la transition et passe par l'outbox."""
    manager, store, outbox = _build(session_factory)
    v1 = await _create(manager, "publié")
    await manager.publish(v1.id)

    store.failing.add("delete")
    result = await manager.unpublish_all_previous(SESSION, PROJECT)
    assert result.unpublished_count == 1
    assert result.knowledge_synced is False
    assert (await manager.get_version(v1.id)).published is False
    assert await outbox.size() == 1

    store.failing.clear()
    report = await manager.reconciler.replay()
    assert report.succeeded == 1
    assert await outbox.size() == 0
    assert await store.list_entries(_published_filter()) == []


@pytest.mark.asyncio
async def test_failed_kb_insert_on_publish_is_reconciled_later(session_factory) -> None:
    """Publication réussie même si l'insertion de l'entrée dérivée échoue."""
    manager, store, outbox = _build(session_factory)
    v1 = await _create(manager, "à indexer")
    store.failing.add("insert")
    result = await manager.publish(v1.id)
    assert result.version.published is True
    assert result.knowledge_synced is False
    assert await outbox.size() == 1

    store.failing.clear()
    await manager.reconciler.replay()
    entries = await store.list_entries(_published_filter())
    assert [e.content for e in entries] == ["à indexer"]


@pytest.mark.asyncio
async def test_update_content_refreshes_published_entry(session_factory) -> None:
    """Modifier une version publiée met à jour le contenu et l'embedding de l'entrée dérivée."""
    manager, store, _ = _build(session_factory)
    v1 = await _create(manager, "ancien texte")
    await manager.publish(v1.id)
    updated = await manager.update_content(v1.id, "nouveau texte", title="Nouveau titre")
    assert updated.content == "nouveau texte"
    assert updated.title == "Nouveau titre"

    entries = await store.list_entries(_published_filter())
    assert len(entries) == 1
    assert entries[0].content == "nouveau texte"
    assert entries[0].metadata["title"] == "Nouveau titre"
    assert "updated_at" in entries[0].metadata
    assert entries[0].embedding == await FakeEmbeddings().embed("nouveau texte")


@pytest.mark.asyncio
async def test_update_content_of_draft_does_not_index(session_factory) -> None:
    manager, store, _ = _build(session_factory)
    v1 = await _create(manager, "brouillon")
    await manager.update_content(v1.id, "brouillon modifié")
    assert await store.list_entries(_published_filter()) == []
    with pytest.raises(ValidationError):
        await manager.update_content(v1.id, "  ")
    with pytest.raises(VersionNotFoundError):
        await manager.update_content("inconnue", "texte")


@pytest.mark.asyncio
async def test_queries_latest_and_published(session_factory) -> None:
    """latest_version, list_versions (décroissant) et published_versions du projet."""
    manager, _, _ = _build(session_factory)
    assert await manager.latest_version(SESSION) is None
    v1 = await _create(manager, "un")
    v2 = await _create(manager, "deux")
    assert (await manager.latest_version(SESSION)).id == v2.id
    assert [v.version_number for v in await manager.list_versions(SESSION)] == [2, 1]

    other = await _create(manager, "autre session", session_id="s2")
    await manager.publish(v1.id)
    await manager.publish(other.id)
    published = await manager.published_versions(PROJECT)
    assert len(published) == EXPECTED_TWO
    assert published[0].id == other.id
    assert await manager.existing_published_document_id("s3", PROJECT) is None


@pytest.mark.asyncio
async def test_session_locks_released_after_creation(session_factory) -> None:
    """Les verrous des sessions terminées ne s'accumulent pas."""
    manager, _, _ = _build(session_factory)
    for index in range(CONCURRENT_CREATES * 10):
        await _create(manager, "texte", session_id=f"session-{index}")
    assert manager.locks.active_keys == 0
