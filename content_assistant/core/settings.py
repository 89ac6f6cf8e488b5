"""Définition et chargement des paramètres de configuration applicative.

Objectif du module
------------------
- Centraliser les paramètres (env/.env) via Pydantic Settings
- Résoudre le fichier `.env` à utiliser selon la stratégie: ENV_FILE > .env.{APP_ENV} > .env
- Porter les réglages du cœur RAG (chunking, seuils de similarité, fenêtres de contexte)
"""

import os
from pathlib import Path

from pydantic import AnyHttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict

# Détermination du fichier .env à utiliser avec priorité:
# 1) ENV_FILE (chemin explicite)
# 2) .env.{APP_ENV} si présent
# 3) .env (défaut)
_cwd = Path.cwd()
_env_file_from_env = os.getenv("ENV_FILE")
if _env_file_from_env:
    _ENV_FILE_PATH = _env_file_from_env
else:
    _app_env = os.getenv("APP_ENV", "dev")
    _candidate_specific = _cwd / f".env.{_app_env}"
    _candidate_default = _cwd / ".env"
    if _candidate_specific.exists():
        _ENV_FILE_PATH = _candidate_specific
    else:
        _ENV_FILE_PATH = _candidate_default


class Settings(BaseSettings):
    """Modèle de configuration chargé depuis l'environnement et .env."""

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE_PATH,
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        case_sensitive=False,
    )
    APP_NAME: str = "content-assistant"
    APP_ENV: str = "dev"
    APP_DEBUG: bool = True

    CORS_ORIGINS: list[AnyHttpUrl] | list[str] = []
    DATABASE_URL: str = "sqlite+aiosqlite:///./content_assistant.db"
    DB_AUTO_CREATE: bool = True
    KNOWLEDGE_STORE_BACKEND: str = "sql"
    REDIS_URL: str | None = None
    SESSION_LOCK_TIMEOUT_S: float = 30.0

    # Service de complétion / embeddings
    OPENAI_API_KEY: str | None = None
    OPENAI_BASE_URL: str | None = None
    EMBEDDINGS_MODEL: str = "text-embedding-3-small"
    CHAT_MODEL: str = "gpt-4.1-mini"
    CHAT_TEMPERATURE: float = 0.7
    CHAT_MAX_TOKENS: int = 2000
    COLLABORATOR_TIMEOUT_S: float = 15.0

    # Chunking / ingestion
    CHUNK_MAX_SIZE: int = 1000
    CHUNK_OVERLAP: int = 100
    EMBEDDING_CONCURRENCY: int = 8
    SCRAPE_MAX_CHARS: int = 5000
    SCRAPE_USER_AGENT: str = "content-assistant-scraper/0.1"

    # Retrieval / contexte RAG
    RAG_DEFAULT_LIMIT: int = 5
    RAG_SIMILARITY_THRESHOLD: float = 0.3
    RAG_SESSION_SIMILARITY_THRESHOLD: float = 0.2
    RAG_HISTORY_WINDOW: int = 10
    RAG_ATTACHMENT_CAP: int = 8

    # Versions de contenu et réconciliation de la base de connaissances
    VERSION_CREATE_MAX_RETRIES: int = 3
    KB_OUTBOX_MAX_ATTEMPTS: int = 5
    KB_OUTBOX_TTL_S: float = 86400.0

    LOG_LEVEL: str = "DEBUG"
    LOG_JSON: bool = False


def get_settings() -> Settings:
    """Construit et retourne la configuration de l'application."""
    return Settings()
