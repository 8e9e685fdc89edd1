import asyncio
import httpx
import logging
from typing import Callable, Iterable, Sequence
from .cache import ScoreCache, default_cache
from .config import DEFAULT_MAX_CONCURRENT
from .normalizer import normalize_title
from .parser import ScorePair
from .sources import DEFAULT_SOURCES, ScoreSource, build_client

logger = logging.getLogger(__name__)


class ScoreResolver:
    """
    Resolves free-text titles to Metacritic scores.

    normalize -> cache -> sources in priority order -> cache -> return.
    Nothing raised by the cache or a source reaches the caller; the worst
    case is an empty ScorePair, which is cached like any other result.

    Concurrent calls for the same normalized title share one lookup.
    A client is created on first use when none is injected; close it with
    aclose() or by using the resolver as an async context manager.
    """

    def __init__(
        self,
        cache: ScoreCache | None = None,
        sources: Sequence[ScoreSource] = DEFAULT_SOURCES,
        client: httpx.AsyncClient | None = None,
    ):
        self.cache = cache if cache is not None else ScoreCache()
        self.sources = list(sources)
        self.client = client
        self._owns_client = client is None
        self._in_flight: dict[str, asyncio.Task] = {}

    async def __aenter__(self):
        if self.client is None:
            self.client = build_client()
            self._owns_client = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
        return False

    async def aclose(self) -> None:
        if self._owns_client and self.client:
            await self.client.aclose()
            self.client = None

    async def resolve(self, raw_title: str | None) -> ScorePair:
        key = normalize_title(raw_title)
        if not key:
            return ScorePair.empty()

        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.create_task(self._resolve_uncached(key, raw_title))
            self._in_flight[key] = task
            # Popped only after the cache write inside the task, so a caller
            # arriving in between joins the task instead of starting a second fetch
            task.add_done_callback(lambda _t, k=key: self._in_flight.pop(k, None))
        else:
            logger.debug(f"Joining in-flight lookup for '{key}'")

        # shield: one caller being cancelled must not cancel the shared lookup
        return await asyncio.shield(task)

    async def _resolve_uncached(self, key: str, raw_title: str) -> ScorePair:
        cached = await self._cache_get(key)
        if cached is not None:
            logger.debug(f"Cache hit for '{key}': {cached}")
            return cached

        if self.client is None:
            self.client = build_client()
            self._owns_client = True

        scores = await self._run_sources(raw_title)
        result = scores if scores is not None else ScorePair.empty()
        logger.info(f"Resolved '{raw_title}' -> critic={result.critic} user={result.user}")

        await self._cache_put(key, result)
        return result

    async def _run_sources(self, raw_title: str) -> ScorePair | None:
        for source in self.sources:
            try:
                scores = await source.try_fetch(self.client, raw_title)
            except Exception as exc:  # noqa: BLE001
                logger.error(f"Source '{source.name}' failed for '{raw_title}': {exc}")
                continue
            # A partial pair counts as success
            if scores is not None and not scores.is_empty:
                logger.debug(f"Source '{source.name}' matched '{raw_title}'")
                return scores
        return None

    async def _cache_get(self, key: str) -> ScorePair | None:
        try:
            entry = await self.cache.get(key)
        except Exception as exc:  # noqa: BLE001
            logger.warning(f"Cache read failed for '{key}', treating as miss: {exc}")
            return None
        return entry.scores if entry is not None else None

    async def _cache_put(self, key: str, scores: ScorePair) -> None:
        try:
            await self.cache.put(key, scores)
        except Exception as exc:  # noqa: BLE001
            logger.warning(f"Cache write failed for '{key}', skipping: {exc}")

    async def resolve_many(
        self,
        titles: Iterable[str],
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        on_done: Callable[[str, ScorePair], None] | None = None,
    ) -> dict[str, ScorePair]:
        """
        Resolve a batch of titles with bounded concurrency.

        Duplicate and near-duplicate titles collapse onto the same lookup.
        on_done, if given, is called as each title finishes (e.g. to drive
        a progress bar).
        """
        unique_titles = list(dict.fromkeys(titles))
        semaphore = asyncio.Semaphore(max_concurrent)

        async def _one(title: str) -> ScorePair:
            async with semaphore:
                scores = await self.resolve(title)
            if on_done is not None:
                on_done(title, scores)
            return scores

        results = await asyncio.gather(*[_one(t) for t in unique_titles])
        return dict(zip(unique_titles, results))


async def resolve_title(title: str, cache: ScoreCache | None = None) -> ScorePair:
    """One-shot lookup using the persistent cache by default."""
    async with ScoreResolver(cache=cache if cache is not None else default_cache()) as resolver:
        return await resolver.resolve(title)
