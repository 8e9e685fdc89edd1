import argparse
import asyncio
import atexit
import json
import logging
from pathlib import Path
from tqdm import tqdm

from .cache import ScoreCache, default_cache
from .config import BAND_GREEN_MIN, BAND_YELLOW_MIN, DEFAULT_MAX_CONCURRENT
from .database import close_pool
from .normalizer import normalize_title, title_to_slug
from .parser import ScorePair
from .resolver import ScoreResolver

logger = logging.getLogger(__name__)

# Register cleanup on exit
atexit.register(close_pool)


def score_band(score100: float | None) -> str:
    """Colour band for a score on the 0-100 scale."""
    if score100 is None:
        return "grey"
    if score100 >= BAND_GREEN_MIN:
        return "green"
    if score100 >= BAND_YELLOW_MIN:
        return "yellow"
    return "red"


def format_badge(scores: ScorePair) -> str:
    """'MC 75 [green] | USER 7.2 [green]'; user scores are banded on x10."""
    critic = f"MC {scores.critic}" if scores.critic is not None else "MC …"
    user = f"USER {scores.user:.1f}" if scores.user is not None else "USER …"
    user100 = round(scores.user * 10) if scores.user is not None else None
    return f"{critic} [{score_band(scores.critic)}] | {user} [{score_band(user100)}]"


def _read_titles(args: argparse.Namespace) -> list[str]:
    titles = list(args.titles or [])
    if getattr(args, "file", None):
        lines = Path(args.file).read_text(encoding="utf-8").splitlines()
        titles.extend(line.strip() for line in lines if line.strip())
    return titles


def _build_cache(args: argparse.Namespace) -> ScoreCache:
    if getattr(args, "no_cache", False):
        return ScoreCache()
    return default_cache()


async def _lookup(titles: list[str], cache: ScoreCache, max_concurrent: int) -> dict[str, ScorePair]:
    async with ScoreResolver(cache=cache) as resolver:
        if len(titles) == 1:
            return {titles[0]: await resolver.resolve(titles[0])}

        with tqdm(total=len(set(titles)), desc="Lookup") as pbar:
            return await resolver.resolve_many(
                titles,
                max_concurrent=max_concurrent,
                on_done=lambda _title, _scores: pbar.update(1),
            )


def cmd_lookup(args: argparse.Namespace) -> None:
    """Resolve titles to Metacritic scores."""
    titles = _read_titles(args)
    if not titles:
        logger.error("No titles given (pass titles or --file)")
        return

    results = asyncio.run(_lookup(titles, _build_cache(args), args.max_concurrent))

    if args.format == "json":
        print(json.dumps({title: scores.to_dict() for title, scores in results.items()}, indent=2, ensure_ascii=False))
        return

    for title, scores in results.items():
        logger.info(f"  {title}: {format_badge(scores)}")


def cmd_normalize(args: argparse.Namespace) -> None:
    """Show the cache key and slug for each title."""
    for title in args.titles:
        logger.info(f"  {title!r} -> key={normalize_title(title)!r} slug={title_to_slug(title)!r}")


def cmd_cache_stats(args: argparse.Namespace) -> None:
    stats = asyncio.run(default_cache().stats())
    logger.info("\nCache Statistics:")
    logger.info(f"  Entries: {stats['entries']}")
    logger.info(f"  Expired: {stats['expired']}")
    logger.info(f"  Cached 'not found': {stats['not_found']}")
    logger.info(f"  TTL: {stats['ttl_days']:.0f} days")


def cmd_cache_purge(args: argparse.Namespace) -> None:
    removed = asyncio.run(default_cache().purge_expired())
    logger.info(f"Removed {removed} expired entries")


def cmd_cache_clear(args: argparse.Namespace) -> None:
    removed = asyncio.run(default_cache().clear())
    logger.info(f"Removed {removed} entries")


def main():
    parser = argparse.ArgumentParser(description="Metacritic score lookup for cinema listings")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    lookup_parser = subparsers.add_parser("lookup", help="Look up critic/user scores for titles")
    lookup_parser.add_argument("titles", nargs="*", help="Movie titles as shown on the listing")
    lookup_parser.add_argument("--file", "-f", help="File with titles (one per line)")
    lookup_parser.add_argument("--format", choices=["text", "json"], default="text", help="Output format")
    lookup_parser.add_argument("--no-cache", action="store_true",
                               help="Skip the persistent cache (results are not saved)")
    lookup_parser.add_argument("--max-concurrent", type=int, default=DEFAULT_MAX_CONCURRENT,
                               help="Max titles looked up in parallel")
    lookup_parser.set_defaults(func=cmd_lookup)

    normalize_parser = subparsers.add_parser("normalize", help="Show normalized cache keys and slugs")
    normalize_parser.add_argument("titles", nargs="+", help="Titles to normalize")
    normalize_parser.set_defaults(func=cmd_normalize)

    stats_parser = subparsers.add_parser("cache-stats", help="Show cache statistics")
    stats_parser.set_defaults(func=cmd_cache_stats)

    purge_parser = subparsers.add_parser("cache-purge", help="Delete expired cache entries")
    purge_parser.set_defaults(func=cmd_cache_purge)

    clear_parser = subparsers.add_parser("cache-clear", help="Delete all cached scores")
    clear_parser.set_defaults(func=cmd_cache_clear)

    args = parser.parse_args()

    # Configure logging based on verbosity
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    args.func(args)


if __name__ == "__main__":
    main()
