# ============================================================
# Module : content_assistant/services/web_ingest.py
# Objet  : Ingestion de pages web dans la base de connaissances (source `web_scraping`).
# Contexte : chaque URL est traitée indépendamment; un échec (HTTP, page vide, collaborateur)
#            est consigné dans le rapport sans interrompre les autres URL.
# ============================================================

from __future__ import annotations

from datetime import UTC, datetime

import httpx
import structlog
from bs4 import BeautifulSoup
from pydantic import BaseModel, Field

from content_assistant.domain.errors import CollaboratorError
from content_assistant.domain.ingestion import KnowledgeIngestor
from content_assistant.domain.knowledge import ContentItem, KnowledgeSource

DEFAULT_MAX_CHARS = 5000
UNTITLED = "Untitled"
NON_CONTENT_TAGS = ["script", "style", "noscript", "template"]

log = structlog.get_logger(__name__).bind(component="web_ingest")


class ScrapedPage(BaseModel):
    """Texte extrait d'une page HTML."""

    url: str
    title: str
    content: str


class ScrapeResult(BaseModel):
    """Issue du traitement d'une URL."""

    url: str
    success: bool
    title: str = ""
    entries: int = 0
    error: str | None = None


class ScrapeReport(BaseModel):
    """Bilan d'un lot d'URL."""

    results: list[ScrapeResult] = Field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)


def extract_page(url: str, html: str, max_chars: int = DEFAULT_MAX_CHARS) -> ScrapedPage:
    """
    Extrait le titre et le texte visible d'un document HTML.

    Args:
        url: Adresse de la page (conservée dans le résultat).
        html: Document brut.
        max_chars: Longueur maximale du texte conservé.

    Returns:
        ScrapedPage: Titre (`Untitled` à défaut) et texte aux espaces normalisés.
    """
    soup = BeautifulSoup(html, "html.parser")
    title = soup.title.get_text(strip=True) if soup.title else ""
    for tag in soup(NON_CONTENT_TAGS):
        tag.decompose()
    body = soup.body or soup
    text = " ".join(body.get_text(separator=" ").split())
    return ScrapedPage(url=url, title=title or UNTITLED, content=text[:max_chars])


class WebScrapeIngestor:
    """Récupère des pages web et les ingère comme connaissances `web_scraping`."""

    def __init__(
        self,
        ingestor: KnowledgeIngestor,
        client: httpx.AsyncClient | None = None,
        timeout_s: float = 15.0,
        max_chars: int = DEFAULT_MAX_CHARS,
        user_agent: str | None = None,
    ) -> None:
        """Initialise le service.

        Args:
            ingestor: Ingestion (découpage, embeddings, écriture).
            client: Client HTTP à utiliser; à défaut le service crée et possède le sien.
            timeout_s: Délai maximal de chaque requête HTTP.
            max_chars: Longueur maximale du texte conservé par page.
            user_agent: En-tête User-Agent des requêtes.
        """
        self.ingestor = ingestor
        self.max_chars = max_chars
        self._owns_client = client is None
        if client is None:
            headers = {"User-Agent": user_agent} if user_agent else None
            client = httpx.AsyncClient(
                headers=headers,
                timeout=httpx.Timeout(timeout_s),
                follow_redirects=True,
            )
        self._client = client

    async def fetch(self, url: str) -> ScrapedPage:
        """Télécharge et extrait une page. Lève `httpx.HTTPError` en cas d'échec."""
        response = await self._client.get(url)
        response.raise_for_status()
        return extract_page(url, response.text, self.max_chars)

    async def scrape(
        self, project_id: str, session_id: str | None, urls: list[str]
    ) -> ScrapeReport:
        """
        Ingère chaque URL dans la base de connaissances du projet.

        Les pages longues sont découpées par l'ingestion; chaque entrée porte `url`, `title` et
        `scraped_at` dans ses métadonnées.

        Returns:
            ScrapeReport: Un résultat par URL, dans l'ordre reçu.
        """
        report = ScrapeReport()
        for url in urls:
            report.results.append(await self._scrape_one(project_id, session_id, url))
        log.info(
            "web_scrape_done",
            project_id=project_id,
            urls=len(urls),
            succeeded=report.success_count,
        )
        return report

    async def _scrape_one(
        self, project_id: str, session_id: str | None, url: str
    ) -> ScrapeResult:
        try:
            page = await self.fetch(url)
        except httpx.HTTPError as exc:
            log.warning("web_scrape_fetch_failed", url=url, error_type=type(exc).__name__)
            return ScrapeResult(url=url, success=False, error=str(exc) or type(exc).__name__)
        if not page.content:
            return ScrapeResult(url=url, success=False, title=page.title, error="no content")

        item = ContentItem(
            content=page.content,
            source=KnowledgeSource.WEB_SCRAPING,
            metadata={
                "url": url,
                "title": page.title,
                "scraped_at": datetime.now(UTC).isoformat(),
            },
        )
        try:
            rows = await self.ingestor.store_bulk(project_id, session_id, [item])
        except CollaboratorError as exc:
            log.warning(
                "web_scrape_ingest_failed",
                url=url,
                error_type=type(exc).__name__,
                status_code=exc.status_code,
            )
            return ScrapeResult(url=url, success=False, title=page.title, error=exc.message)
        return ScrapeResult(url=url, success=True, title=page.title, entries=len(rows))

    async def aclose(self) -> None:
        """Ferme le client HTTP s'il a été créé par le service."""
        if self._owns_client:
            await self._client.aclose()
