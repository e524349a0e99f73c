"""Job acquisition: create a remote job, poll it, fall back to the sync endpoint.

State machine for the asynchronous path::

    Created -> Polling -> {Done, Failed, TimedOut}

``Done`` needs both ``status == "done"`` and an extractable URL in the same
response; a done status without a URL keeps polling. Creation failures
(non-2xx or no recognisable job id) switch to the synchronous endpoint, which
polls ``/url/client/{client}`` until a URL appears or its own timeout expires.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
import time
from collections.abc import Callable
from typing import Any
from urllib.parse import quote

import requests

from car_fetch.config import FetchConfig
from car_fetch.exceptions import JobFailure, NoUrlPresent, PollTimeout, SchemaError
from car_fetch.logging_config import LogContext
from car_fetch.network_utils import (
    clip_body,
    is_success,
    parse_json_body,
    request,
    session_for,
)
from car_fetch.response_paths import (
    bare_identifier,
    extract_job_id,
    extract_status,
    extract_url,
)

logger = logging.getLogger(__name__)

STATUS_DONE = "done"
FAILURE_STATUSES = frozenset({"error", "failed", "cancelled"})


class JobState(str, enum.Enum):
    CREATED = "created"
    POLLING = "polling"
    DONE = "done"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclasses.dataclass
class Backoff:
    """Additive backoff capped at ``ceiling``: initial, initial+step, ... ceiling."""

    initial: float
    step: float
    ceiling: float
    current: float = dataclasses.field(init=False)

    def __post_init__(self) -> None:
        self.current = min(self.initial, self.ceiling)

    def advance(self) -> float:
        """Return the interval to sleep now and grow the next one."""
        interval = self.current
        self.current = min(self.current + self.step, self.ceiling)
        return interval


@dataclasses.dataclass(frozen=True)
class Acquisition:
    url: str
    job_id: str | None
    path: str  # "async" or "sync"


class JobCoordinator:
    def __init__(
        self,
        config: FetchConfig,
        *,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.session = session or session_for(config)
        self._sleep = sleep
        self._clock = clock
        self.state = JobState.CREATED

    def _backoff(self) -> Backoff:
        return Backoff(
            initial=self.config.poll_interval,
            step=self.config.poll_step,
            ceiling=self.config.poll_max_interval,
        )

    def _url(self, path: str) -> str:
        return f"{self.config.api_base}{path}"

    def _get(self, path: str) -> requests.Response:
        return request(self.session, "GET", self._url(path), timeout=self.config.request_timeout)

    def create_job(self, client: str, provider: str | None = None) -> str:
        """POST /job and return the job id.

        Raises:
            SchemaError: the service rejected the request or no job id could
                be recognised in the body; callers fall back to the sync path.
        """
        payload: dict[str, Any] = {"client": client}
        if provider:
            payload["provider"] = provider
        logger.info(
            "Creating job for client=%s%s ...",
            client,
            f", provider={provider}" if provider else "",
        )
        response = request(
            self.session,
            "POST",
            self._url("/job"),
            timeout=self.config.request_timeout,
            json=payload,
            headers={"Content-Type": "application/json"},
        )
        logger.info("POST /job -> HTTP %s", response.status_code)
        body = response.text
        context = {"status_code": response.status_code, "response": clip_body(body)}
        if not is_success(response):
            raise SchemaError(f"Job creation returned HTTP {response.status_code}", context=context)
        document = parse_json_body(response)
        job_id = None
        if isinstance(document, (dict, list)):
            job_id = extract_job_id(document)
        if job_id is None:
            job_id = bare_identifier(body, document)
        if job_id is None:
            raise SchemaError("Could not extract job ID from response", context=context)
        self.state = JobState.POLLING
        logger.info("Job created: %s", job_id)
        return job_id

    def poll_job(self, job_id: str, timeout: float | None = None) -> str:
        """Poll GET /jobs/{id} until it is done with a URL, failed, or timed out."""
        budget = self.config.poll_timeout if timeout is None else timeout
        logger.info("Polling job status until done (timeout %ss)...", budget)
        self.state = JobState.POLLING
        backoff = self._backoff()
        start = self._clock()
        while True:
            response = self._get(f"/jobs/{quote(job_id, safe='')}")
            if not is_success(response):
                logger.warning("GET /jobs/%s -> HTTP %s", job_id, response.status_code)
            document = parse_json_body(response)
            status = extract_status(document)
            status = status.lower() if status else None
            if status == STATUS_DONE:
                try:
                    url = extract_url(document)
                except NoUrlPresent:
                    logger.info("Job done but URL not found yet; retrying...")
                else:
                    self.state = JobState.DONE
                    logger.info("Job done.")
                    return url
            elif status in FAILURE_STATUSES:
                self.state = JobState.FAILED
                raise JobFailure(
                    f"Job ended with status: {status}",
                    context={"job_id": job_id, "status": status, "response": clip_body(response.text)},
                )
            elapsed = self._clock() - start
            if elapsed >= budget:
                self.state = JobState.TIMED_OUT
                raise PollTimeout(
                    f"Timed out after {budget:g}s",
                    context={"job_id": job_id, "status": status, "response": clip_body(response.text)},
                )
            self._sleep(backoff.advance())

    def poll_sync(self, client: str, timeout: float | None = None) -> str:
        """Poll GET /url/client/{client} until a URL appears or the timeout expires.

        Non-2xx answers are logged and polling continues, since the body may
        still carry a usable URL.
        """
        budget = self.config.sync_timeout if timeout is None else timeout
        path = f"/url/client/{quote(client, safe='')}"
        logger.info(
            "Falling back to sync endpoint: GET %s (poll up to %ss)...", self._url(path), budget
        )
        backoff = self._backoff()
        start = self._clock()
        while True:
            response = self._get(path)
            if not is_success(response):
                logger.warning("Sync GET -> HTTP %s (continuing)", response.status_code)
            try:
                url = extract_url(parse_json_body(response))
            except NoUrlPresent:
                pass
            else:
                logger.info("URL ready from sync endpoint.")
                return url
            elapsed = self._clock() - start
            if elapsed >= budget:
                raise PollTimeout(
                    f"Timed out after {budget:g}s waiting for a URL",
                    context={"client": client, "response": clip_body(response.text)},
                )
            self._sleep(backoff.advance())

    def acquire(self, client: str, provider: str | None = None) -> Acquisition:
        """Resolve the download URL for ``client``, async first then sync."""
        with LogContext(client=client):
            try:
                job_id = self.create_job(client, provider)
            except SchemaError as exc:
                logger.warning("%s; response body follows:\n%s", exc.message, exc.context.get("response", ""))
                return Acquisition(url=self.poll_sync(client), job_id=None, path="sync")
            with LogContext(job_id=job_id):
                return Acquisition(url=self.poll_job(job_id), job_id=job_id, path="async")
