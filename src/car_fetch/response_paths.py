"""Schema-free access to service response documents.

Responses from the job service have no fixed shape. Fields are looked up
through an ordered list of JSON-pointer paths; URLs are found by walking the
whole tree and collecting absolute http(s) strings in encounter order.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator, Sequence
from typing import Any

from car_fetch.exceptions import NoUrlPresent

JOB_ID_PATHS: tuple[str, ...] = (
    "/jobID",
    "/jobId",
    "/id",
    "/data/jobID",
    "/data/jobId",
    "/data/id",
    "/job/id",
    "/job/jobID",
    "/job/jobId",
    "/result/jobID",
    "/result/jobId",
    "/result/id",
)

STATUS_PATHS: tuple[str, ...] = (
    "/status",
    "/data/status",
    "/job/status",
)

URL_RE = re.compile(r"^(https?)://")
CONTAINER_URL_RE = re.compile(r"\.car($|[?&]|[^A-Za-z0-9._-])", re.IGNORECASE)
BARE_ID_RE = re.compile(r"^[A-Za-z0-9._:-]+$")


def _unescape(token: str) -> str:
    return token.replace("~1", "/").replace("~0", "~")


def resolve_pointer(document: Any, pointer: str) -> Any | None:
    """Resolve an RFC 6901 pointer, returning None when any step is missing."""
    if pointer == "":
        return document
    if not pointer.startswith("/"):
        raise ValueError(f"JSON pointer must start with '/': {pointer!r}")
    node = document
    for raw in pointer[1:].split("/"):
        token = _unescape(raw)
        if isinstance(node, dict):
            if token not in node:
                return None
            node = node[token]
        elif isinstance(node, list):
            if not token.isdigit() or int(token) >= len(node):
                return None
            node = node[int(token)]
        else:
            return None
    return node


def first_present(document: Any, pointers: Sequence[str]) -> Any | None:
    """Return the first value found under ``pointers`` that is not null or false."""
    for pointer in pointers:
        value = resolve_pointer(document, pointer)
        # jq `//` would keep "", but an empty id or status is treated as missing
        if value is None or value is False or value == "":
            continue
        return value
    return None


def first_string(document: Any, pointers: Sequence[str]) -> str | None:
    value = first_present(document, pointers)
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value)
    if text == "null":
        return None
    return text


def iter_strings(document: Any) -> Iterator[str]:
    """Yield every string in the tree, depth-first in document order."""
    stack: list[Any] = [document]
    while stack:
        node = stack.pop()
        if isinstance(node, str):
            yield node
        elif isinstance(node, dict):
            stack.extend(reversed(list(node.values())))
        elif isinstance(node, list):
            stack.extend(reversed(node))


def collect_urls(document: Any) -> list[str]:
    return [value for value in iter_strings(document) if URL_RE.match(value)]


def choose_url(urls: Iterable[str]) -> str | None:
    """Prefer the first container-file URL, else the first URL at all."""
    candidates = list(urls)
    for url in candidates:
        if CONTAINER_URL_RE.search(url):
            return url
    return candidates[0] if candidates else None


def extract_url(document: Any) -> str:
    """Pick the download URL from a response document.

    Raises:
        NoUrlPresent: the document holds no absolute http(s) string.
    """
    url = choose_url(collect_urls(document))
    if url is None:
        raise NoUrlPresent("No URL present in response")
    return url


def extract_job_id(document: Any) -> str | None:
    return first_string(document, JOB_ID_PATHS)


def extract_status(document: Any) -> str | None:
    return first_string(document, STATUS_PATHS)


def bare_identifier(body: str, document: Any) -> str | None:
    """Treat a body that is not a JSON object or array as a literal job id.

    A body that decodes to a JSON string scalar is unwrapped first. Bodies that
    decode to objects or arrays never qualify, even when no id path matched.
    """
    if isinstance(document, (dict, list)):
        return None
    candidate = document if isinstance(document, str) else body.strip()
    if candidate and candidate != "null" and BARE_ID_RE.match(candidate):
        return candidate
    return None
