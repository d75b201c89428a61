from __future__ import annotations

"""Favicon discovery and hashing.

The hash is the one used by Shodan/FOFA style favicon searches: MurmurHash3
(x86, 32 bit, seed 0, signed) over the base64 text of the icon, wrapped at 76
columns with a trailing newline.
"""

import base64
import logging
from typing import Callable, List, Optional
from urllib.parse import urlparse

import mmh3
from bs4 import BeautifulSoup

from ..exceptions import TransportError
from .transport import Transport

ICON_RELS = ("icon", "shortcut icon", "mask-icon", "apple-touch-icon")
ICON_SUFFIXES = (".ico", ".png", ".jpg")
DEFAULT_FAVICON_PATH = "/favicon.ico"

# Leading bytes of the image formats recognised by content sniffing.
IMAGE_SIGNATURES = (
    b"\x00\x00\x01\x00",
    b"\x00\x00\x02\x00",
    b"BM",
    b"GIF87a",
    b"GIF89a",
    b"\x89PNG\r\n\x1a\n",
    b"\xff\xd8\xff",
)

logger = logging.getLogger("pyxis")


def extract_icon_urls(html: str) -> List[str]:
    """Return `href`s of icon `<link>` elements in document order."""
    if not html:
        return []
    soup = BeautifulSoup(html, "html.parser")
    urls: List[str] = []
    for link in soup.find_all("link"):
        href = link.get("href")
        rel = link.get("rel")
        if href is None or not rel:
            continue
        # bs4 splits rel into a list of tokens.
        rel_text = " ".join(rel) if isinstance(rel, list) else str(rel)
        if rel_text.strip().lower() in ICON_RELS:
            urls.append(href)
    return urls


def resolve_icon_url(page_url: str, candidates: List[str]) -> Optional[str]:
    parsed = urlparse(page_url)
    if not parsed.scheme or not parsed.netloc:
        return None
    base = f"{parsed.scheme}://{parsed.netloc}"

    for candidate in candidates:
        candidate = (candidate or "").strip()
        if not candidate:
            continue
        if candidate.startswith("//"):
            return "http:" + candidate
        if candidate.startswith("http"):
            return candidate
        if candidate.lower().endswith(ICON_SUFFIXES):
            return base + "/" + candidate.strip("/")
    return base + DEFAULT_FAVICON_PATH


def is_image(data: bytes) -> bool:
    if not data:
        return False
    if data.startswith(IMAGE_SIGNATURES):
        return True
    return data[:4] == b"RIFF" and data[8:14] == b"WEBPVP"


def favicon_hash(data: bytes) -> str:
    """Hash raw icon bytes; `""` when the content is not an image."""
    if not is_image(data):
        return ""
    return str(mmh3.hash(base64.encodebytes(data)))


class FaviconHasher:
    def __init__(
        self,
        transport: Transport,
        extractor: Callable[[str], List[str]] = extract_icon_urls,
    ):
        self.transport = transport
        self.extractor = extractor

    def icon_url(self, page_url: str, page_body: str) -> Optional[str]:
        if page_url.lower().endswith(".ico"):
            return page_url
        return resolve_icon_url(page_url, self.extractor(page_body))

    async def hash(self, page_url: str, page_body: str) -> str:
        """Favicon hash for a fetched page, or `""` if there is none.

        A missing or non-image favicon is a normal outcome, so every failure
        below collapses to the empty string.
        """
        if not page_url or not page_body:
            return ""
        try:
            url = self.icon_url(page_url, page_body)
        except Exception as exc:
            logger.debug("favicon extraction failed for %s: %s", page_url, exc)
            return ""
        if not url:
            return ""

        try:
            fetched = await self.transport.fetch(url, follow_redirects=True)
        except TransportError as exc:
            logger.debug("favicon fetch failed for %s: %s", url, exc)
            return ""

        if fetched.status_code != 200 or not fetched.raw_body:
            return ""
        return favicon_hash(fetched.raw_body)
