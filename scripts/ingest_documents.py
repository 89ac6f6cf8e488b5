"""
Script: scripts/ingest_documents.py
Objet : Découper et ingérer des fichiers texte dans la base de connaissances d'un projet.

Utilisation:
  python -m scripts.ingest_documents --project-id p1 docs/a.md docs/b.txt
  python -m scripts.ingest_documents --project-id p1 --session-id s1 --source user_upload notes.txt

Notes:
  - Chaque fichier devient un élément; les fichiers longs sont découpés avec chevauchement.
  - Le nom du fichier est conservé dans les métadonnées (`filename`).
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from content_assistant.core.container import build_container
from content_assistant.core.logging import setup_logging
from content_assistant.core.settings import get_settings
from content_assistant.domain.knowledge import ContentItem, KnowledgeSource


def load_items(paths: list[str], source: KnowledgeSource) -> list[ContentItem]:
    """Lit les fichiers et construit les éléments d'ingestion (fichiers vides ignorés)."""
    items: list[ContentItem] = []
    for raw in paths:
        path = Path(raw)
        text = path.read_text(encoding="utf-8")
        if not text.strip():
            continue
        items.append(ContentItem(content=text, source=source, metadata={"filename": path.name}))
    return items


async def _ingest(project_id: str, session_id: str | None, items: list[ContentItem]) -> int:
    container = build_container(get_settings())
    await container.startup()
    try:
        rows = await container.ingestor.store_bulk(project_id, session_id, items)
        return len(rows)
    finally:
        await container.aclose()


def main() -> int:
    parser = argparse.ArgumentParser(description="Ingest text files into the knowledge base")
    parser.add_argument("--project-id", required=True)
    parser.add_argument("--session-id", default=None)
    parser.add_argument(
        "--source",
        default=KnowledgeSource.USER_UPLOAD.value,
        choices=[s.value for s in KnowledgeSource],
    )
    parser.add_argument("paths", nargs="+")
    args = parser.parse_args()

    missing = [p for p in args.paths if not Path(p).is_file()]
    if missing:
        print(f"files not found: {', '.join(missing)}")
        return 2
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL, settings.LOG_JSON)
    items = load_items(args.paths, KnowledgeSource(args.source))
    if not items:
        print("nothing to ingest")
        return 0
    stored = asyncio.run(_ingest(args.project_id, args.session_id, items))
    print(f"stored={stored}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
