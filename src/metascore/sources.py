import httpx
import logging
from abc import ABC, abstractmethod
from urllib.parse import quote
from .config import HTTP_TIMEOUT, METACRITIC_BASE, MIRROR_PREFIX
from .normalizer import normalize_title, title_to_slug
from .parser import ScorePair, parse_scores, extract_movie_link, slug_from_link

logger = logging.getLogger(__name__)

# Always go to the network; never reuse a cached transport response
NO_CACHE_HEADERS = {"Cache-Control": "no-cache", "Pragma": "no-cache"}


def build_client() -> httpx.AsyncClient:
    """
    Shared client for all sources.

    No cookies or auth are configured and no User-Agent is forced; the
    scraping route must work with the library defaults.
    """
    return httpx.AsyncClient(
        follow_redirects=True,
        timeout=HTTP_TIMEOUT,
        headers=NO_CACHE_HEADERS,
    )


def mirrored(url: str) -> str:
    """Route a URL through the text relay: https://host/path -> <prefix>host/path."""
    return MIRROR_PREFIX + url.split("://", 1)[-1]


async def fetch_text(client: httpx.AsyncClient, url: str) -> str | None:
    """
    GET a URL and return its body, or None on any transport failure.

    Non-2xx responses, network errors, timeouts and empty bodies all count
    as "this candidate failed".
    """
    try:
        resp = await client.get(url)
    except httpx.TimeoutException:
        logger.warning(f"Timeout on {url}")
        return None
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        logger.warning(f"Request error on {url!r}: {type(exc).__name__}: {exc}")
        return None
    finally:
        # Never carry cookies from one candidate to the next
        client.cookies.clear()

    if not resp.is_success:
        logger.debug(f"HTTP {resp.status_code} on {url}")
        return None

    text = resp.text
    if not text or not text.strip():
        logger.debug(f"Empty body from {url}")
        return None
    return text


def detail_page_urls(slug: str) -> list[str]:
    url = f"{METACRITIC_BASE}/movie/{slug}"
    return [url, mirrored(url)]


def search_urls(query: str) -> list[str]:
    primary = f"{METACRITIC_BASE}/search/movie/{query}/results"
    legacy = f"{METACRITIC_BASE}/search/all/{query}/results?cats=movies"
    return [primary, mirrored(primary), legacy, mirrored(legacy)]


async def fetch_detail_page(client: httpx.AsyncClient, slug: str) -> ScorePair | None:
    """
    Fetch the film page for a slug (direct, then mirrored) and parse it.

    Returns the first pair with at least one score, or None.
    """
    if not slug:
        return None

    for url in detail_page_urls(slug):
        html = await fetch_text(client, url)
        if html is None:
            continue
        scores = parse_scores(html)
        if not scores.is_empty:
            logger.debug(f"Scores for '{slug}' from {url}: {scores}")
            return scores
        logger.debug(f"No scores found on {url}")
    return None


async def search_and_fetch(client: httpx.AsyncClient, title: str) -> ScorePair | None:
    """Search for a title, follow the first film result, and parse its page."""
    normalized = normalize_title(title)
    if not normalized:
        return None

    query = quote(normalized, safe="")
    for url in search_urls(query):
        html = await fetch_text(client, url)
        if html is None:
            continue

        slug = slug_from_link(extract_movie_link(html))
        if not slug:
            logger.debug(f"No film link in search results at {url}")
            continue

        scores = await fetch_detail_page(client, slug)
        if scores is not None:
            return scores
    return None


class ScoreSource(ABC):
    """One way of turning a title into scores. None means "no usable result"."""

    name: str = "base"

    @abstractmethod
    async def try_fetch(self, client: httpx.AsyncClient, title: str) -> ScorePair | None:
        pass


class DetailPageSource(ScoreSource):
    """Guess the film page URL from the slugified title."""

    name = "detail_page"

    async def try_fetch(self, client: httpx.AsyncClient, title: str) -> ScorePair | None:
        return await fetch_detail_page(client, title_to_slug(title))


class SearchSource(ScoreSource):
    """Use Metacritic search and follow the first film result."""

    name = "search"

    async def try_fetch(self, client: httpx.AsyncClient, title: str) -> ScorePair | None:
        return await search_and_fetch(client, title)


# Priority order: the slug guess is one request when it hits
DEFAULT_SOURCES: tuple[ScoreSource, ...] = (DetailPageSource(), SearchSource())
