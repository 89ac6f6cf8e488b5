"""Configuration de test pour pytest avec gestion des chemins.

Ce module configure pytest pour résoudre les imports `content_assistant` et `scripts` en ajoutant
la racine du projet au sys.path, et fournit une base SQLite temporaire par test.
"""

import os
import sys

import pytest
import pytest_asyncio

# Ensure project root is on sys.path so that
# imports like `from content_assistant...` resolve.
CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from content_assistant.infra.repo.db import (  # noqa: E402
    create_all,
    get_engine,
    get_session_factory,
)


@pytest.fixture
def db_url(tmp_path) -> str:
    """URL d'une base SQLite fichier propre à chaque test."""
    return f"sqlite+aiosqlite:///{tmp_path / 'content_assistant_test.db'}"


@pytest_asyncio.fixture
async def engine(db_url):
    """Moteur asynchrone avec le schéma créé, libéré en fin de test."""
    eng = get_engine(db_url)
    await create_all(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    """Factory de sessions liée au moteur du test."""
    return get_session_factory(engine)
