"""Script de rejeu de l'outbox de synchronisation de la base de connaissances.

Ce script rejoue les synchronisations `published_content` en attente et sort avec un code non-zéro
si des échecs persistent.

Utilisation:
  python -m scripts.replay_kb_outbox --max-items 100
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from content_assistant.core.container import build_container
from content_assistant.core.logging import setup_logging
from content_assistant.core.settings import get_settings
from content_assistant.services.kb_sync import ReplayReport


async def _replay(max_items: int | None) -> ReplayReport:
    container = build_container(get_settings())
    await container.startup()
    try:
        return await container.reconciler.replay(limit=max_items)
    finally:
        await container.aclose()


def main() -> int:
    """Replay pending knowledge-base syncs and exit non-zero if failures remain."""
    parser = argparse.ArgumentParser(description="Replay knowledge-base sync outbox")
    parser.add_argument("--max-items", type=int, default=None)
    args = parser.parse_args()

    settings = get_settings()
    setup_logging(settings.LOG_LEVEL, settings.LOG_JSON)
    report = asyncio.run(_replay(args.max_items))
    print(f"succeeded={report.succeeded} failed={report.failed} dropped={report.dropped}")
    return 1 if report.failed else 0


if __name__ == "__main__":
    sys.exit(main())
