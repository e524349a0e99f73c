from __future__ import annotations

import json
import logging
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from car_fetch.config import FetchConfig
from car_fetch.exceptions import NetworkError

logger = logging.getLogger(__name__)

DEFAULT_RETRY_STATUS_CODES = {429, 500, 502, 503, 504}
MAX_LOGGED_BODY = 2000


def create_retry_session(
    *,
    total_retries: int = 5,
    backoff_factor: float = 0.5,
    status_forcelist: set[int] | None = None,
    user_agent: str | None = None,
) -> requests.Session:
    """Create a requests session that retries refused connections and transient statuses.

    Only idempotent methods are retried on status codes; a POST is retried
    solely when the connection was never established.
    """
    status_list = status_forcelist or DEFAULT_RETRY_STATUS_CODES
    retries = Retry(
        total=total_retries,
        connect=total_retries,
        read=0,
        backoff_factor=backoff_factor,
        status_forcelist=list(status_list),
        allowed_methods=("GET", "HEAD"),
        raise_on_status=False,
    )
    session = requests.Session()
    adapter = HTTPAdapter(max_retries=retries)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    if user_agent:
        session.headers["User-Agent"] = user_agent
    return session


def session_for(config: FetchConfig) -> requests.Session:
    return create_retry_session(
        total_retries=config.transport_retries,
        user_agent=config.user_agent,
    )


def request(
    session: requests.Session,
    method: str,
    url: str,
    *,
    timeout: tuple[float, float],
    **kwargs: Any,
) -> requests.Response:
    """Issue a request, mapping transport failures to NetworkError."""
    headers = {"Accept": "application/json", **kwargs.pop("headers", {})}
    try:
        return session.request(method, url, headers=headers, timeout=timeout, **kwargs)
    except requests.exceptions.RequestException as exc:
        raise NetworkError(
            f"{method} {url} failed: {exc}",
            context={"url": url, "method": method},
        ) from exc


def is_success(response: requests.Response) -> bool:
    return 200 <= response.status_code < 300


def parse_json_body(response: requests.Response) -> Any | None:
    """Return the decoded JSON body, or None when the body is not JSON."""
    try:
        return json.loads(response.text)
    except ValueError:
        return None


def clip_body(text: str, limit: int = MAX_LOGGED_BODY) -> str:
    if len(text) <= limit:
        return text
    return f"{text[:limit]}... [{len(text) - limit} more chars]"
