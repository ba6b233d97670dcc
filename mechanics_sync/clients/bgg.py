"""
BoardGameGeek XML API2 client.

Every request is funneled through the shared RateLimiter. Detail and
thumbnail lookups never raise to the caller: provider failures surface as
``None`` so a single bad game cannot abort a bulk refresh.
"""
import re
import time
import xml.etree.ElementTree as ET
from typing import Any, Optional

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from mechanics_sync.clients.rate_limiter import RateLimiter
from mechanics_sync.config import get_settings
from mechanics_sync.exceptions import BGGError, CollectionNotReady
from mechanics_sync.models import CatalogItem, GameDetails

logger = structlog.get_logger()

NOT_RANKED = "Not Ranked"

# Applied in order; BGG double-escapes some entities in descriptions
_DESCRIPTION_ENTITIES = (
    ("&amp;#10;", "\n"),
    ("&amp;ldquo;", '"'),
    ("&amp;rdquo;", '"'),
    ("&amp;rsquo;", "'"),
    ("&amp;", "&"),
    ("&#10;", "\n"),
    ("&ldquo;", '"'),
    ("&rdquo;", '"'),
    ("&rsquo;", "'"),
)

_INT_PREFIX = re.compile(r"^\s*([+-]?\d+)")
_FLOAT_PREFIX = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")

LINK_MECHANIC = "boardgamemechanic"
LINK_CATEGORY = "boardgamecategory"
LINK_DESIGNER = "boardgamedesigner"


# =============================================================================
# XML HELPERS
# =============================================================================

def parse_int(value: Optional[str]) -> Optional[int]:
    """Leading-integer parse; None when missing or unparseable."""
    if not value:
        return None
    match = _INT_PREFIX.match(value)
    return int(match.group(1)) if match else None


def parse_float(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    match = _FLOAT_PREFIX.match(value)
    return float(match.group(1)) if match else None


def parse_rank(value: Optional[str]) -> Optional[int]:
    """Board game rank; the "Not Ranked" sentinel maps to None."""
    if not value or value == NOT_RANKED:
        return None
    return parse_int(value)


def decode_description(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    for entity, replacement in _DESCRIPTION_ENTITIES:
        text = text.replace(entity, replacement)
    return text


def _text(element: ET.Element, path: str) -> Optional[str]:
    node = element.find(path)
    if node is None or not node.text:
        return None
    return node.text.strip() or None


def _attr(element: Optional[ET.Element], path: str, attribute: str = "value") -> Optional[str]:
    if element is None:
        return None
    node = element.find(path)
    if node is None:
        return None
    return node.get(attribute) or None


def _links(item: ET.Element, link_type: str) -> Optional[list[str]]:
    values = [
        link.get("value")
        for link in item.findall(f"link[@type='{link_type}']")
        if link.get("value")
    ]
    return values or None


def parse_thing(xml_text: str, game_id: str) -> Optional[GameDetails]:
    """
    Parse a ``/thing?stats=1`` document into GameDetails.

    Returns None when the document has no ``<item>`` node.
    Raises ``ET.ParseError`` on malformed XML.
    """
    root = ET.fromstring(xml_text)
    item = root if root.tag == "item" else root.find("item")
    if item is None:
        return None

    ratings = item.find("statistics/ratings")

    return GameDetails(
        id=item.get("id") or game_id,
        name=_attr(item, "name[@type='primary']") or "",
        thumbnail=_text(item, "thumbnail"),
        image=_text(item, "image"),
        description=decode_description(_text(item, "description")),
        year_published=parse_int(_attr(item, "yearpublished")),
        min_players=parse_int(_attr(item, "minplayers")),
        max_players=parse_int(_attr(item, "maxplayers")),
        playing_time=parse_int(_attr(item, "playingtime")),
        min_play_time=parse_int(_attr(item, "minplaytime")),
        max_play_time=parse_int(_attr(item, "maxplaytime")),
        min_age=parse_int(_attr(item, "minage")),
        rating=parse_float(_attr(ratings, "average")),
        weight=parse_float(_attr(ratings, "averageweight")),
        rank=parse_rank(_attr(ratings, ".//rank[@name='boardgame']")),
        mechanics=_links(item, LINK_MECHANIC),
        categories=_links(item, LINK_CATEGORY),
        designers=_links(item, LINK_DESIGNER),
    )


def parse_search(xml_text: str) -> list[GameDetails]:
    root = ET.fromstring(xml_text)
    games = []
    for item in root.findall("item"):
        game_id = item.get("id")
        name = _attr(item, "name")
        if game_id and name:
            games.append(
                GameDetails(
                    id=game_id,
                    name=name,
                    year_published=parse_int(_attr(item, "yearpublished")),
                )
            )
    return games


def parse_collection(xml_text: str) -> list[CatalogItem]:
    """
    Parse a ``/collection`` document.

    Raises BGGError for error documents and CollectionNotReady when BGG
    answers with its "request accepted" message instead of items.
    """
    root = ET.fromstring(xml_text)

    error = root if root.tag == "errors" else root.find(".//error")
    if error is not None:
        message = _text(error, ".//message") or "Unknown error"
        raise BGGError(f"BGG API Error: {message}")

    # "Your request for this collection has been accepted and will be processed..."
    if root.tag == "message":
        raise CollectionNotReady((root.text or "").strip() or "Collection request queued")

    if root.tag != "items":
        raise BGGError("No items found in collection")

    items = []
    for item in root.findall("item"):
        object_id = item.get("objectid")
        name = _text(item, "name")
        if not object_id or not name:
            continue
        items.append(CatalogItem(id=object_id, name=name))
    return items


# =============================================================================
# CLIENT
# =============================================================================

class BGGClient:
    """
    Async client for the BoardGameGeek XML API2.

    Usage:
        async with BGGClient() as client:
            details = await client.fetch_details("13")
    """

    def __init__(
        self,
        rate_limiter: Optional[RateLimiter] = None,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        collection_retry_attempts: Optional[int] = None,
        collection_retry_initial_seconds: Optional[float] = None,
    ):
        self._settings = get_settings()
        self._client: Optional[httpx.AsyncClient] = None
        self._transport = transport

        self.base_url = base_url or self._settings.bgg_api_base_url
        self._timeout = timeout_seconds or self._settings.bgg_request_timeout_seconds
        self._rate_limiter = rate_limiter or RateLimiter(
            self._settings.bgg_min_request_interval_seconds
        )
        self._collection_attempts = (
            collection_retry_attempts or self._settings.collection_retry_attempts
        )
        self._collection_initial_wait = (
            collection_retry_initial_seconds or self._settings.collection_retry_initial_seconds
        )

        # id -> thumbnail URL, None records a known miss
        self._thumbnail_cache: dict[str, Optional[str]] = {}

        # Metrics
        self._request_count = 0
        self._error_count = 0
        self._total_latency_ms = 0.0

    def _get_headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/xml",
            "User-Agent": "MechanicsSync/1.0",
        }
        if self._settings.bgg_api_token:
            headers["Authorization"] = f"Bearer {self._settings.bgg_api_token}"
        return headers

    async def __aenter__(self) -> "BGGClient":
        await self.connect()
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    async def connect(self) -> None:
        """Initialize the HTTP client."""
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self._timeout),
            headers=self._get_headers(),
            transport=self._transport,
        )
        logger.info("BGG client connected", base_url=self.base_url)

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info(
                "BGG client closed",
                requests_made=self._request_count,
                errors=self._error_count,
            )

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    async def _request(self, path: str, params: dict[str, Any]) -> httpx.Response:
        """Single GET, dispatched through the rate limiter."""
        if not self._client:
            raise RuntimeError("Client not connected. Call connect() first.")

        client = self._client

        async def send() -> httpx.Response:
            start = time.monotonic()
            try:
                response = await client.get(path, params=params)
            except httpx.HTTPError:
                self._error_count += 1
                raise
            elapsed_ms = (time.monotonic() - start) * 1000
            self._request_count += 1
            self._total_latency_ms += elapsed_ms
            logger.debug(
                "BGG request completed",
                path=path,
                params=params,
                status=response.status_code,
                latency_ms=round(elapsed_ms, 2),
            )
            return response

        return await self._rate_limiter.submit(send)

    # =========================================================================
    # GAME DETAILS
    # =========================================================================

    async def fetch_details(self, game_id: str) -> Optional[GameDetails]:
        """
        Fetch full metadata for one game.

        Returns None on any transport, HTTP or parse failure.
        """
        log = logger.bind(game_id=game_id)

        try:
            response = await self._request("/thing", {"id": game_id, "stats": 1})
        except httpx.HTTPError as e:
            log.warning("BGG details request failed", error=str(e), error_type=type(e).__name__)
            return None

        if response.status_code == 429:
            log.warning("Rate limited by BGG", retry_after=response.headers.get("Retry-After"))
            return None

        if not response.is_success:
            log.warning("BGG details request rejected", status=response.status_code)
            return None

        try:
            details = parse_thing(response.text, game_id)
        except ET.ParseError as e:
            log.warning("Malformed BGG document", error=str(e))
            return None

        if details is None:
            log.info("No BGG item for game")
        return details

    # =========================================================================
    # THUMBNAILS
    # =========================================================================

    async def fetch_thumbnail(self, game_id: str) -> Optional[str]:
        """Thumbnail URL for a game, memoized per client."""
        if game_id in self._thumbnail_cache:
            return self._thumbnail_cache[game_id]

        if not self._client:
            raise RuntimeError("Client not connected. Call connect() first.")

        return await self._rate_limiter.submit(lambda: self._load_thumbnail(game_id))

    async def _load_thumbnail(self, game_id: str) -> Optional[str]:
        # May have been filled while this request waited in the queue
        if game_id in self._thumbnail_cache:
            return self._thumbnail_cache[game_id]

        try:
            response = await self._client.get("/thing", params={"id": game_id})
            self._request_count += 1
        except httpx.HTTPError as e:
            self._error_count += 1
            logger.warning("BGG thumbnail request failed", game_id=game_id, error=str(e))
            self._thumbnail_cache[game_id] = None
            return None

        if response.status_code == 429:
            # Not cached so a later call can retry
            logger.warning("Rate limited fetching thumbnail, will retry later", game_id=game_id)
            return None

        thumbnail = None
        if response.is_success:
            try:
                root = ET.fromstring(response.text)
                item = root.find("item")
                if item is not None:
                    thumbnail = _text(item, "thumbnail")
            except ET.ParseError as e:
                logger.warning("Malformed BGG thumbnail document", game_id=game_id, error=str(e))

        self._thumbnail_cache[game_id] = thumbnail
        return thumbnail

    def clear_thumbnail_cache(self) -> None:
        self._thumbnail_cache.clear()

    @property
    def thumbnail_cache_size(self) -> int:
        return len(self._thumbnail_cache)

    # =========================================================================
    # SEARCH
    # =========================================================================

    async def search(self, query: str) -> list[GameDetails]:
        """Search board games by name; empty list on failure."""
        try:
            response = await self._request("/search", {"query": query, "type": "boardgame"})
            response.raise_for_status()
            return parse_search(response.text)
        except (httpx.HTTPError, ET.ParseError) as e:
            logger.warning("BGG search failed", query=query, error=str(e))
            return []

    # =========================================================================
    # COLLECTION
    # =========================================================================

    async def fetch_collection(self, username: Optional[str] = None) -> list[CatalogItem]:
        """
        Fetch the owned games of a BGG user.

        BGG answers 202 while it prepares the export, so the request is
        retried with exponential backoff until it is ready.
        """
        username = username or self._settings.bgg_username
        if not username:
            raise BGGError("No BGG username configured")

        retrying = AsyncRetrying(
            retry=retry_if_exception_type((CollectionNotReady, httpx.TransportError)),
            stop=stop_after_attempt(self._collection_attempts),
            wait=wait_exponential(
                multiplier=self._collection_initial_wait,
                min=self._collection_initial_wait,
                max=60,
            ),
            reraise=True,
        )

        async for attempt in retrying:
            with attempt:
                items = await self._fetch_collection_once(username)
        logger.info("Fetched BGG collection", username=username, count=len(items))
        return items

    async def _fetch_collection_once(self, username: str) -> list[CatalogItem]:
        response = await self._request(
            "/collection",
            {"username": username, "own": 1, "stats": 1},
        )

        if response.status_code == 202:
            logger.info("Collection is being processed", username=username)
            raise CollectionNotReady(f"Collection for {username} is queued")

        if not response.is_success:
            raise BGGError(f"BGG API returned {response.status_code}")

        try:
            return parse_collection(response.text)
        except ET.ParseError as e:
            raise BGGError(f"Malformed collection document: {e}") from e

    def get_metrics(self) -> dict[str, Any]:
        """Get client metrics."""
        avg_latency = (
            self._total_latency_ms / self._request_count
            if self._request_count > 0
            else 0
        )
        return {
            "requests": self._request_count,
            "errors": self._error_count,
            "thumbnails_cached": len(self._thumbnail_cache),
            "avg_latency_ms": round(avg_latency, 2),
        }
