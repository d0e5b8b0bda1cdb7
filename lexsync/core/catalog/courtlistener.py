import logging
import time
from datetime import date, datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Callable, List, Optional
from urllib.parse import urlparse
import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from lexsync.config.settings import CatalogConfig
from lexsync.core.errors import (
    CatalogError, ConfigurationError, NotDownloadableError, RateLimitedError, TransientNetworkError
)
from lexsync.core.pipeline.throttle import Throttle
from lexsync.models.catalog import CatalogArtifact, CatalogFilters, CatalogItem, Court

logger = logging.getLogger(__name__)

# --- Boundary schemas: the shapes CourtListener actually returns. Validated once, then dropped. ---

class CourtListenerOpinion(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    download_url: Optional[str] = None
    local_path: Optional[str] = None
    sha1: Optional[str] = None
    type: Optional[str] = None

class CourtListenerResult(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    cluster_id: int
    case_name: str = Field(default="", alias="caseName")
    court: str = ""
    court_id: str = ""
    date_filed: Optional[str] = Field(default=None, alias="dateFiled")
    docket_number: Optional[str] = Field(default=None, alias="docketNumber")
    docket_id: Optional[int] = None
    citation: List[str] = Field(default_factory=list)
    cite_count: int = Field(default=0, alias="citeCount")
    status: Optional[str] = None
    source: Optional[str] = None
    opinions: List[CourtListenerOpinion] = Field(default_factory=list)

class CourtListenerPage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    count: Optional[int] = None
    next: Optional[str] = None
    results: List[dict] = Field(default_factory=list)

class CourtListenerCourt(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    short_name: str = ""
    full_name: str = ""
    jurisdiction: str = ""

def is_usable_url(url: Optional[str], artifact_type: Optional[str] = None) -> bool:
    """Non-blank absolute http(s) URL that looks like a document link."""
    if not url or not url.strip():
        return False
    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return False
    return "pdf" in url.lower() or "pdf" in (artifact_type or "").lower()

def to_catalog_item(result: CourtListenerResult) -> CatalogItem:
    artifacts = [
        CatalogArtifact(
            download_url=op.download_url.strip(),
            sha1=op.sha1,
            artifact_type=op.type,
            opinion_id=op.id
        )
        for op in result.opinions
        if is_usable_url(op.download_url, op.type)
    ]
    return CatalogItem(
        cluster_id=result.cluster_id,
        case_name=result.case_name,
        court=result.court,
        court_id=result.court_id,
        date_filed=result.date_filed,
        docket_number=result.docket_number,
        docket_id=result.docket_id,
        citations=result.citation,
        cite_count=result.cite_count,
        status=result.status,
        source=result.source,
        artifacts=artifacts
    )

class BackoffPolicy:
    """
    Non-decreasing retry delays for one call:
    base * 2**(attempt-1), capped at max_delay, scaled up for 429s,
    lengthened (never shortened) by Retry-After, and never below the previous delay.
    """

    def __init__(self, base_delay: float = 1.0, max_delay: float = 30.0, rate_limit_multiplier: float = 2.0):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.rate_limit_multiplier = rate_limit_multiplier

    def delay(self, attempt: int, rate_limited: bool = False,
              retry_after: Optional[float] = None, previous: float = 0.0) -> float:
        delay = min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))
        if rate_limited:
            delay *= self.rate_limit_multiplier
        if retry_after is not None:
            delay = max(delay, retry_after)
        return max(delay, previous)

def parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)

class CourtListenerConnector:
    """
    Read-only client for the CourtListener v4 REST API.
    - search(): paginated opinion search, only items with a usable PDF artifact survive
    - download(): authenticated fetch of an item's first artifact, None when unavailable
    Every request goes through one Throttle and a bounded, non-decreasing backoff.
    """

    def __init__(self, config: CatalogConfig, api_key: str, client: Optional[httpx.Client] = None):
        self.config = config
        self.api_key = api_key
        self.base_url = config.base_url.rstrip("/")
        self.client = client or httpx.Client(timeout=config.timeout, follow_redirects=True)
        self.backoff = BackoffPolicy(
            base_delay=config.retry_base_delay,
            max_delay=config.max_retry_delay,
            rate_limit_multiplier=config.rate_limit_multiplier
        )
        self.throttle = Throttle(config.request_interval, name="catalog")

    def ensure_configured(self) -> None:
        if not (self.api_key or "").strip():
            raise ConfigurationError("Missing credential(s): COURTLISTENER_API_KEY")

    @property
    def headers(self) -> dict:
        return {"Authorization": f"Token {self.api_key}"}

    def search(self, filters: Optional[CatalogFilters] = None) -> List[CatalogItem]:
        self.ensure_configured()
        filters = filters or CatalogFilters()
        params = {"page_size": str(filters.page_size or self.config.page_size)}
        if filters.query:
            params["q"] = filters.query
        if filters.court:
            params["court"] = filters.court
        if filters.date_filed_after:
            params["date_filed__gte"] = filters.date_filed_after
        if filters.date_filed_before:
            params["date_filed__lte"] = filters.date_filed_before

        url: Optional[str] = f"{self.base_url}/search/"
        items: List[CatalogItem] = []
        dropped = 0
        pages = 0
        while url and pages < self.config.max_pages and len(items) < filters.max_results:
            page = self._fetch_page(url, params if pages == 0 else None)
            pages += 1
            for raw in page.results:
                try:
                    result = CourtListenerResult.model_validate(raw)
                except ValidationError as e:
                    logger.warning(f"Dropping malformed catalog result: {e.errors()[0].get('msg')}")
                    dropped += 1
                    continue
                item = to_catalog_item(result)
                if not item.artifacts:
                    dropped += 1
                    continue
                items.append(item)
            # `next` already carries the query string
            url = page.next

        logger.info(f"Catalog search returned {len(items)} usable items ({dropped} without a usable artifact)")
        return items[:filters.max_results]

    def list_courts(self) -> List[Court]:
        self.ensure_configured()
        courts = []
        url: Optional[str] = f"{self.base_url}/courts/"
        pages = 0
        while url and pages < self.config.max_pages:
            page = self._fetch_page(url, None)
            pages += 1
            for raw in page.results:
                try:
                    court = CourtListenerCourt.model_validate(raw)
                except ValidationError:
                    continue
                courts.append(Court(**court.model_dump()))
            url = page.next
        return courts

    @staticmethod
    def recent_filters(days: int = 30, page_size: Optional[int] = None, max_results: int = 100) -> CatalogFilters:
        since = date.today() - timedelta(days=days)
        return CatalogFilters(date_filed_after=since.isoformat(), page_size=page_size, max_results=max_results)

    def download(self, item: CatalogItem) -> Optional[bytes]:
        artifact = item.primary_artifact
        if artifact is None or not is_usable_url(artifact.download_url, artifact.artifact_type):
            logger.warning(f"{item.reference} has no usable download URL, skipping")
            return None

        if self.config.download_proxy_url:
            proxy = f"{self.config.download_proxy_url.rstrip('/')}/download"
            send = lambda: self.client.post(proxy, json={"url": artifact.download_url, "apiKey": self.api_key})
        else:
            send = lambda: self.client.get(artifact.download_url, headers=self.headers)

        try:
            response = self._send_with_retries(send, item.reference)
        except (NotDownloadableError, TransientNetworkError) as e:
            logger.warning(f"Download unavailable for {item.reference}: {e}")
            return None
        if not response.content:
            logger.warning(f"Empty download for {item.reference}")
            return None
        return response.content

    def _fetch_page(self, url: str, params: Optional[dict]) -> CourtListenerPage:
        try:
            response = self._send_with_retries(
                lambda: self.client.get(url, params=params, headers=self.headers), url
            )
            return CourtListenerPage.model_validate(response.json())
        except (NotDownloadableError, TransientNetworkError) as e:
            raise CatalogError(f"Catalog request failed: {e}") from e
        except (ValueError, ValidationError) as e:
            raise CatalogError(f"Catalog returned an unexpected payload: {e}") from e

    def _send_with_retries(self, send: Callable[[], httpx.Response], what: str) -> httpx.Response:
        previous_delay = 0.0
        last_error: Optional[Exception] = None
        for attempt in range(1, self.config.max_attempts + 1):
            rate_limited = False
            retry_after = None
            try:
                with self.throttle:
                    response = send()
                if response.status_code == 429:
                    retry_after = parse_retry_after(response.headers.get("Retry-After"))
                    raise RateLimitedError(f"429 from {what}", retry_after=retry_after)
                if response.status_code >= 400:
                    raise NotDownloadableError(f"{response.status_code} from {what}")
                return response
            except RateLimitedError as e:
                last_error = e
                rate_limited = True
            except httpx.TransportError as e:
                last_error = TransientNetworkError(f"{type(e).__name__} for {what}: {e}")

            if attempt == self.config.max_attempts:
                break
            delay = self.backoff.delay(attempt, rate_limited=rate_limited, retry_after=retry_after, previous=previous_delay)
            previous_delay = delay
            logger.warning(f"{last_error}. Retrying in {delay:.2f}s... (Attempt {attempt}/{self.config.max_attempts})")
            time.sleep(delay)

        raise last_error
