"""Image search backend (Google Custom Search) and image download."""
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional
import logging
import httpx

from carfinder.cache import TTLCache

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://www.googleapis.com/customsearch/v1"


@dataclass(frozen=True)
class ImageRecord:
    url: str
    thumbnail_url: str = ""
    title: str = ""
    source: str = ""
    width: Optional[int] = None
    height: Optional[int] = None

    @property
    def verify_url(self) -> str:
        return self.thumbnail_url or self.url

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


class ImageSearchClient:
    def __init__(
        self,
        api_key: str = "",
        cx: str = "",
        endpoint: str = DEFAULT_ENDPOINT,
        timeout: float = 10.0,
        cache: TTLCache | None = None,
        cache_ttl: float = 900.0,
    ) -> None:
        self.api_key = api_key
        self.cx = cx
        self.endpoint = endpoint
        self.timeout = timeout
        self.cache = cache
        self.cache_ttl = cache_ttl

    @classmethod
    def from_config(cls, config: Dict[str, Any], cache: TTLCache | None = None) -> "ImageSearchClient":
        return cls(
            api_key=str(config.get("api_key") or ""),
            cx=str(config.get("cx") or ""),
            endpoint=str(config.get("endpoint") or DEFAULT_ENDPOINT),
            timeout=float(config.get("timeout_seconds", 10.0)),
            cache=cache,
            cache_ttl=float(config.get("cache_ttl_seconds", 900.0)),
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.cx)

    def search(self, query: str, count: int = 4) -> List[ImageRecord]:
        """Image results for ``query``. Returns [] on any failure."""
        if not self.configured:
            logger.warning("Image search API key or CX not configured; skipping image search")
            return []
        key = TTLCache.make_key("images", query, count)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return list(cached)
        params = {
            "key": self.api_key,
            "cx": self.cx,
            "q": query,
            "searchType": "image",
            "imgType": "photo",
            "safe": "active",
            "num": max(1, min(int(count), 10)),
        }
        try:
            with httpx.Client(timeout=self.timeout) as client:
                resp = client.get(self.endpoint, params=params)
                resp.raise_for_status()
                data = resp.json()
        except Exception as exc:
            logger.error(f"Image search failed for '{query}': {exc}")
            return []
        images = self._parse_items(data.get("items") if isinstance(data, dict) else None, query)
        logger.info(f"Found {len(images)} images for '{query}'")
        if images and self.cache is not None:
            self.cache.set(key, tuple(images), self.cache_ttl)
        return images

    def _parse_items(self, items: Any, query: str) -> List[ImageRecord]:
        if not isinstance(items, list):
            return []
        images: List[ImageRecord] = []
        for item in items:
            if not isinstance(item, dict) or not item.get("link"):
                continue
            image = item.get("image") or {}
            images.append(ImageRecord(
                url=str(item.get("link")),
                thumbnail_url=str(image.get("thumbnailLink") or ""),
                title=str(item.get("title") or query),
                source=str(item.get("displayLink") or ""),
                width=image.get("width"),
                height=image.get("height"),
            ))
        return images


def fetch_image(url: str, timeout: float = 10.0) -> bytes:
    with httpx.Client(timeout=timeout, follow_redirects=True) as client:
        resp = client.get(url)
        resp.raise_for_status()
        return resp.content
