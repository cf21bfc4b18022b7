# tools/wikimedia_search.py
from __future__ import annotations

import logging
import re
from typing import Any, Dict, List

import requests

logger = logging.getLogger(__name__)

WIKIMEDIA_API = "https://commons.wikimedia.org/w/api.php"
USER_AGENT = "timemachine/0.1 (historical slideshow; https://commons.wikimedia.org/wiki/Commons:API)"

_YEAR_RE = re.compile(r"\b(1[0-9]{3}|20[0-2][0-9])\b")
# Latin-script capitalization only; other scripts fall through to the word fallback
_PLACE_RE = re.compile(r"\b[A-Z][a-zäöüß]+(?:\s+[A-Z][a-zäöüß]+)*")

_PHOTO_EXTS = (".jpg", ".jpeg", ".png")
_REJECT_WORDS = ("icon", "logo", "map")


def extract_search_query(text: str) -> str:
    """
    Keyword query for the image search: up to 3 place-like tokens plus the
    first year. With fewer than 2 keywords, the first 5 longer words instead.
    """
    text = text or ""
    years = _YEAR_RE.findall(text)
    places = _PLACE_RE.findall(text)

    keywords = list(dict.fromkeys(places[:3] + years[:1]))
    if len(keywords) >= 2:
        return " ".join(keywords) + " historical"

    words = [w for w in text.split() if len(w) > 3][:5]
    return " ".join(words) + " historical photo"


def _is_photo(title: str) -> bool:
    t = (title or "").lower()
    return t.endswith(_PHOTO_EXTS) and not any(w in t for w in _REJECT_WORDS)


def pick_thumbnails(data: Dict[str, Any], count: int) -> List[str]:
    pages = (data.get("query") or {}).get("pages") or {}
    if isinstance(pages, dict):
        pages = list(pages.values())
    # generator=search keeps the rank in "index"; the pages mapping is keyed by id
    pages = sorted(pages, key=lambda p: p.get("index", 0))

    urls: List[str] = []
    for p in pages:
        if not _is_photo(p.get("title", "")):
            continue
        info = (p.get("imageinfo") or [{}])[0]
        thumb = info.get("thumburl")
        if thumb:
            urls.append(thumb)
        if len(urls) >= count:
            break
    return urls


def search_images(
    text: str,
    count: int = 3,
    *,
    api_url: str = WIKIMEDIA_API,
    thumb_width: int = 800,
    timeout_s: float = 15.0,
) -> List[str]:
    """Return up to `count` thumbnail URLs from Wikimedia Commons. Never raises."""
    if count <= 0:
        return []
    query = extract_search_query(text)
    logger.debug("Wikimedia search: %r (%d images)", query, count)

    params = {
        "action": "query",
        "generator": "search",
        "gsrsearch": query,
        "gsrnamespace": "6",
        "gsrlimit": str(count + 10),  # extra results survive the filename filter
        "prop": "imageinfo",
        "iiprop": "url|extmetadata|size",
        "iiurlwidth": str(thumb_width),
        "format": "json",
        "origin": "*",
    }
    try:
        r = requests.get(api_url, params=params, headers={"User-Agent": USER_AGENT}, timeout=timeout_s)
        if r.status_code != 200:
            logger.debug("Wikimedia HTTP %s", r.status_code)
            return []
        urls = pick_thumbnails(r.json(), count)
    except (requests.RequestException, ValueError) as e:
        logger.debug("Wikimedia error: %s", e)
        return []

    logger.debug("Wikimedia: %d images found", len(urls))
    return urls
