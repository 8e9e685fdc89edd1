"""Request/response envelope for page-scanning callers."""
import logging
from .resolver import ScoreResolver

logger = logging.getLogger(__name__)

MESSAGE_TYPE = "GET_METACRITIC_SCORES"


async def handle_message(resolver: ScoreResolver, message: dict | None) -> dict | None:
    """
    Answer a score request.

    {"type": "GET_METACRITIC_SCORES", "title": "..."} ->
    {"ok": True, "data": {"critic": ..., "user": ...}}

    Unexpected failures come back as {"ok": False, "error": "..."}. Messages
    of any other type are not ours and return None.
    """
    if not isinstance(message, dict) or message.get("type") != MESSAGE_TYPE:
        return None

    try:
        scores = await resolver.resolve(message.get("title"))
    except Exception as exc:  # noqa: BLE001
        logger.error(f"Score request failed for {message.get('title')!r}: {exc}")
        return {"ok": False, "error": str(exc)}
    return {"ok": True, "data": scores.to_dict()}
