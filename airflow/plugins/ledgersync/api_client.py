"""
Analytics API client: paged OData reads for one company.

Every entity set is read with authenticated GETs following @odata.nextLink
until the server stops returning one. A stored watermark turns the first
request into a $filter on lastModifiedDateTime.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Type

import requests
from requests.adapters import HTTPAdapter

from ledgersync.config import DEFAULT_MAX_PAGES, SyncSettings
from ledgersync.entities.base import LedgerRecord
from ledgersync.errors import ApiError
from ledgersync.utils import EPOCH, ensure_utc, format_watermark

logger = logging.getLogger(__name__)

# Error bodies are kept for the SyncLog row; cap their size
MAX_ERROR_BODY = 2000


def create_session(pool_connections: int = 4, pool_maxsize: int = 8) -> requests.Session:
    """
    Create a requests session with connection pooling and no retries.

    A failed call fails the entity sync; the next scheduled run is the retry.
    """
    session = requests.Session()
    adapter = HTTPAdapter(
        max_retries=0,
        pool_connections=pool_connections,
        pool_maxsize=pool_maxsize,
    )
    session.mount("https://", adapter)
    session.mount("http://", adapter)

    logger.info(f"HTTP session initialized: pool_connections={pool_connections}, "
                f"pool_maxsize={pool_maxsize}, retries=0")
    return session


def build_api_root(settings: SyncSettings, bc_tenant_id: str, environment_name: str, company_id: str) -> str:
    """
    Base URL of one company in the analytics API.

    Example:
        https://api.businesscentral.dynamics.com/v2.0/<tenant>/Production/
        api/sestad/analytics/v1.0/companies(<company>)
    """
    base = settings.api_base_url.rstrip('/')
    path = settings.api_path.strip('/')
    return f"{base}/{bc_tenant_id}/{environment_name}/{path}/companies({company_id})"


def build_initial_url(api_root: str, endpoint: str, watermark: Optional[datetime] = None) -> str:
    """First page URL; filtered only when the watermark is past the epoch sentinel."""
    url = f"{api_root.rstrip('/')}/{endpoint}"
    if watermark is not None and ensure_utc(watermark) > EPOCH:
        url += f"?$filter=lastModifiedDateTime gt {format_watermark(watermark)}"
    return url


class PagedFetcher:
    """
    Reads every page of an entity set into typed records.

    Args:
        session: Shared requests.Session
        timeout: Per-request timeout in seconds
        max_pages: Upper bound on pages per fetch
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: int = 60,
        max_pages: int = DEFAULT_MAX_PAGES,
    ):
        self.session = session or create_session()
        self.timeout = timeout
        self.max_pages = max_pages

    def fetch_all(
        self,
        token: str,
        api_root: str,
        endpoint: str,
        record_type: Type[LedgerRecord],
        watermark: Optional[datetime] = None,
    ) -> List[LedgerRecord]:
        """
        Fetch all records of an entity set, in page order.

        Args:
            token: Bearer token
            api_root: Company base URL (see build_api_root)
            endpoint: Entity set name (e.g., 'glEntries')
            record_type: LedgerRecord subclass to parse each element into
            watermark: Only records modified after this instant are requested

        Returns:
            Parsed records; [] when the first page is empty

        Raises:
            ApiError: On a non-success response, a malformed body, a transport
                failure, or more than max_pages pages
        """
        url: Optional[str] = build_initial_url(api_root, endpoint, watermark)
        headers = {
            'Authorization': f'Bearer {token}',
            'Accept': 'application/json',
        }

        records: List[LedgerRecord] = []
        pages = 0

        while url:
            if pages >= self.max_pages:
                raise ApiError(
                    f"Pagination for '{endpoint}' exceeded {self.max_pages} pages; aborting fetch"
                )

            page = self._get_page(url, headers)
            pages += 1

            values = page.get('value') or []
            if not isinstance(values, list):
                raise ApiError(f"Unexpected 'value' in response for '{endpoint}': {type(values).__name__}")

            records.extend(record_type.from_api(item) for item in values)
            url = page.get('@odata.nextLink') or None

        logger.info(f"Fetched {len(records)} {endpoint} records in {pages} page(s)")
        return records

    def _get_page(self, url: str, headers: Dict[str, str]) -> Dict[str, Any]:
        try:
            response = self.session.get(url, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise ApiError(f"GET {url} failed: {e}") from e

        if not response.ok:
            body = response.text[:MAX_ERROR_BODY]
            logger.error(f"API error ({response.status_code}): GET {url}")
            raise ApiError(f"GET {url} failed", status=response.status_code, body=body)

        try:
            payload = response.json()
        except ValueError as e:
            raise ApiError(
                f"GET {url} returned a non-JSON body",
                status=response.status_code,
                body=response.text[:MAX_ERROR_BODY],
            ) from e

        if not isinstance(payload, dict):
            raise ApiError(f"GET {url} returned {type(payload).__name__}, expected an object")
        return payload
