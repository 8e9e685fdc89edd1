"""
Title normalization for cache keys and Metacritic slugs.

Cinema listings decorate titles with projection formats, language markers,
release years and Spanish subtitles. Everything here is pure string work so
the same raw title always maps to the same key.
"""
import re
import unicodedata

# Locale/format qualifiers used on Argentine cinema sites, matched as whole words
QUALIFIER_PATTERNS = [
    re.compile(r"\b(3d|2d|imax|4dx|xd)\b"),
    re.compile(r"\b(subtitulad[oa]s?|sub\.?|doblad[oa]s?|castellano|español)\b"),
    re.compile(r"\b(reestreno|re[\s-]?estreno|preestreno)\b"),
    re.compile(r"\b(edici[oó]n\s+especial)\b"),
]

YEAR_PATTERN = re.compile(r"[\[(]\s*\d{4}\s*[\])]")
COMBINING_MARKS = re.compile("[\u0300-\u036f]")
NON_ALNUM = re.compile(r"[^a-z0-9 ]+")
WHITESPACE = re.compile(r"\s+")
LEADING_ARTICLE = re.compile(r"^(la|el|los|las|the|a|an)\s+")


def normalize_title(raw_title: str | None) -> str:
    """
    Canonicalize a raw title into the key used for caching and searching.

    Steps (in order): strip qualifier tokens, drop a bracketed year, cut the
    subtitle at the first colon and then at the first " - ", remove
    diacritics, drop punctuation, collapse whitespace and finally strip a
    single leading Spanish/English article.

    Returns an empty string for empty or missing input.
    """
    if not raw_title:
        return ""

    title = str(raw_title).lower()
    for pattern in QUALIFIER_PATTERNS:
        title = pattern.sub(" ", title)

    title = YEAR_PATTERN.sub(" ", title)

    # Subtitles: colon first, then dash on what is left
    title = title.split(":", 1)[0]
    title = title.split(" - ", 1)[0]

    title = COMBINING_MARKS.sub("", unicodedata.normalize("NFD", title))
    title = NON_ALNUM.sub(" ", title)
    title = WHITESPACE.sub(" ", title).strip()
    return LEADING_ARTICLE.sub("", title, count=1)


def title_to_slug(raw_title: str | None) -> str:
    """Hyphenated form of the normalized title, used to guess a detail-page URL."""
    normalized = normalize_title(raw_title)
    if not normalized:
        return ""
    return normalized.replace(" ", "-")
