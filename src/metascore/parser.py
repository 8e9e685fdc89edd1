import json
import logging
import math
import re
from dataclasses import dataclass
from selectolax.parser import HTMLParser
from .config import CRITIC_SCORE_MAX, USER_SCORE_MAX

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScorePair:
    """Critic (0-100) and user (0-10) scores; None means unknown."""
    critic: int | None = None
    user: float | None = None

    @classmethod
    def empty(cls) -> "ScorePair":
        return cls(None, None)

    @property
    def is_empty(self) -> bool:
        return self.critic is None and self.user is None

    def to_dict(self) -> dict:
        return {"critic": self.critic, "user": self.user}

    @classmethod
    def from_dict(cls, data: dict | None) -> "ScorePair":
        if not data:
            return cls.empty()
        critic = data.get("critic")
        user = data.get("user")
        return cls(
            critic=int(critic) if critic is not None else None,
            user=float(user) if user is not None else None,
        )


@dataclass(frozen=True)
class ScoreMatcher:
    """A named regex for one Metacritic markup era."""
    name: str
    pattern: re.Pattern

    def match(self, document: str) -> str | None:
        m = self.pattern.search(document)
        return m.group(1) if m else None


class JsonLdRatingMatcher:
    """
    Reads aggregateRating.ratingValue from the page's ld+json blocks.

    Metacritic's structured data carries the Metascore, so this is a
    markup-independent last resort for the critic score. Only ratings on a
    100-point scale are taken, and the value must look like what the markup
    matchers capture: a whole number of 2-3 digits.
    """
    name = "ld_json_aggregate_rating"

    def match(self, document: str) -> str | None:
        if "application/ld+json" not in document:
            return None

        tree = HTMLParser(document)
        for node in tree.css("script[type='application/ld+json']"):
            raw = node.text()
            # Strip CDATA comment wrappers before decoding
            cleaned = re.sub(r"/\*.*?\*/", "", raw, flags=re.S).strip()
            try:
                data = json.loads(cleaned)
            except json.JSONDecodeError as exc:
                logger.debug(f"Failed to parse ld+json block: {exc}")
                continue

            for item in _ld_items(data):
                value = _metascore_from_rating(item.get("aggregateRating"))
                if value is not None:
                    return value
        return None


def _ld_items(data) -> list[dict]:
    """Flatten a decoded ld+json block: top-level lists and @graph wrappers."""
    if isinstance(data, list):
        items = data
    elif isinstance(data, dict):
        graph = data.get("@graph")
        items = [data] + (graph if isinstance(graph, list) else [graph])
    else:
        return []
    return [item for item in items if isinstance(item, dict)]


def _metascore_from_rating(rating) -> str | None:
    if not isinstance(rating, dict):
        return None

    best = rating.get("bestRating")
    if best is not None:
        try:
            if float(best) != CRITIC_SCORE_MAX:
                return None
        except (TypeError, ValueError):
            return None

    try:
        value = float(rating.get("ratingValue"))
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value) or not value.is_integer():
        logger.debug(f"Ignoring non-integral ld+json rating: {value}")
        return None

    text = str(int(value))
    return text if 2 <= len(text) <= 3 else None


# Ordered oldest-first; the live layout is unknown so every era is tried
CRITIC_MATCHERS = [
    ScoreMatcher("metascore_w", re.compile(r"metascore_w[^>]*>(\d{2,3})</span>", re.I)),
    ScoreMatcher("site_review_score", re.compile(r"c-siteReviewScore_num[^>]*>(\d{2,3})</", re.I)),
    ScoreMatcher("product_score_info", re.compile(r"c-productScoreInfo_scoreNumber[^>]*>(\d{2,3})</", re.I)),
    ScoreMatcher("data_v2_meta_score", re.compile(r"<span[^>]*data-v2-meta-score[^>]*>(\d{2,3})</", re.I)),
    JsonLdRatingMatcher(),
]

USER_MATCHERS = [
    ScoreMatcher("metascore_w_user", re.compile(r"metascore_w\s+user[^>]*>(\d(?:\.\d)?)</span>", re.I)),
    ScoreMatcher("site_review_score_user", re.compile(r"c-siteReviewScoreUser_scoreNumber[^>]*>(\d(?:\.\d)?)</", re.I)),
    ScoreMatcher("user_score", re.compile(r"c-userScore_scoreNumber[^>]*>(\d(?:\.\d)?)</", re.I)),
]

# Slug characters stop at whitespace and control characters
MOVIE_HREF_PATTERN = re.compile(r'href="(/movie/[^"?#\s\x00-\x1f\x7f]+)[^"]*"', re.I)
# The text mirror renders links as absolute URLs inside markdown
MOVIE_URL_PATTERN = re.compile(r"https?://(?:www\.)?metacritic\.com(/movie/[^\s\"')?#\x00-\x1f\x7f]+)", re.I)


def _parse_critic(value: str) -> int | None:
    try:
        score = int(float(value))
    except (ValueError, OverflowError):
        return None
    if 0 <= score <= CRITIC_SCORE_MAX:
        return score
    logger.debug(f"Critic score outside range [0-{CRITIC_SCORE_MAX}]: {value}")
    return None


def _parse_user(value: str) -> float | None:
    try:
        score = float(value)
    except (ValueError, OverflowError):
        return None
    if 0.0 <= score <= USER_SCORE_MAX:
        return score
    logger.debug(f"User score outside range [0-{USER_SCORE_MAX}]: {value}")
    return None


def _first_match(matchers, document: str, convert):
    for matcher in matchers:
        raw = matcher.match(document)
        if raw is None:
            continue
        value = convert(raw)
        if value is not None:
            logger.debug(f"Score matched by '{matcher.name}': {value}")
            return value
    return None


def parse_scores(document: str | None) -> ScorePair:
    """
    Extract critic and user scores from a Metacritic page (HTML or mirrored text).

    Critic and user scores are extracted independently, so a page may yield
    either, both or neither. Never raises.
    """
    if not document:
        return ScorePair.empty()

    return ScorePair(
        critic=_first_match(CRITIC_MATCHERS, document, _parse_critic),
        user=_first_match(USER_MATCHERS, document, _parse_user),
    )


def extract_movie_link(document: str | None) -> str | None:
    """Return the first /movie/<slug> path found in a search result page."""
    if not document:
        return None
    for pattern in (MOVIE_HREF_PATTERN, MOVIE_URL_PATTERN):
        m = pattern.search(document)
        if m:
            return m.group(1)
    return None


def slug_from_link(link: str | None) -> str | None:
    """'/movie/the-matrix/' -> 'the-matrix'."""
    if not link or "/movie/" not in link:
        return None
    slug = link.split("/movie/", 1)[1].strip("/").split("/", 1)[0]
    return slug or None
