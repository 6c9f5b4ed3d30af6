"""Optional YouTube enrichment for generated lessons."""

from __future__ import annotations

import logging
import re
from typing import Any, Optional

import requests

from cursia.core.config import settings

logger = logging.getLogger(__name__)

YOUTUBE_SEARCH_URL = "https://www.googleapis.com/youtube/v3/search"
_STOPWORDS = {"de", "la", "el", "los", "las", "y", "en", "con", "para", "del", "un", "una", "a", "al", "por"}


def build_search_query(chunk_title: str, course_title: str, *, max_terms: int = 6) -> str:
    words = re.findall(r"\w+", f"{chunk_title} {course_title}".lower())
    terms: list[str] = []
    for word in words:
        if len(word) > 2 and word not in _STOPWORDS and word not in terms:
            terms.append(word)
    return " ".join(terms[:max_terms])


def find_video_for_chunk(chunk_title: str, course_title: str, *, timeout: float = 10.0) -> Optional[dict[str, Any]]:
    """Return embed data for the best matching video, or ``None``.

    Network and API failures are logged and swallowed: a lesson without a
    video is still a valid lesson.
    """

    if not settings.YOUTUBE_DATA_API_KEY:
        return None

    query = build_search_query(chunk_title, course_title)
    if not query:
        return None

    params = {
        "part": "snippet",
        "q": query,
        "type": "video",
        "maxResults": 5,
        "videoDuration": "medium",
        "videoEmbeddable": "true",
        "relevanceLanguage": "es",
        "safeSearch": "strict",
        "key": settings.YOUTUBE_DATA_API_KEY,
    }
    try:
        response = requests.get(YOUTUBE_SEARCH_URL, params=params, timeout=timeout)
        response.raise_for_status()
        items = response.json().get("items", [])
    except (requests.RequestException, ValueError) as exc:
        logger.warning("Búsqueda en YouTube fallida para '%s': %s", query, exc)
        return None

    for item in items:
        video_id = (item.get("id") or {}).get("videoId")
        if not video_id:
            continue
        snippet = item.get("snippet") or {}
        return {
            "id": video_id,
            "title": snippet.get("title"),
            "channelTitle": snippet.get("channelTitle"),
            "thumbnail": ((snippet.get("thumbnails") or {}).get("medium") or {}).get("url"),
            "embedUrl": f"https://www.youtube.com/embed/{video_id}",
            "url": f"https://www.youtube.com/watch?v={video_id}",
        }
    return None
