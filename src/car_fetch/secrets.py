from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

REDACTED = "<REDACTED>"

_SENSITIVE_KEY_NORMALIZED = {
    "authorization",
    "apikey",
    "xapikey",
    "accesstoken",
    "token",
}

_KEY_VALUE_RE = re.compile(
    r"(?i)(authorization|x-api-key|api[-_]?key|access[-_]?token|token)(\s*[:=]\s*)"
    r"(\"[^\"]*\"|'[^']*'|Bearer\s+[^,\s]+|[^,\s&]+)"
)
_BEARER_RE = re.compile(r"(?i)Bearer\s+[^\s,\"']+")
# Pre-signed download URLs (S3, GCS, CDN tokens) carry their credential in the query.
_SIGNED_QUERY_RE = re.compile(
    r"(?i)([?&](?:x-amz-signature|x-amz-credential|x-amz-security-token|"
    r"x-goog-signature|x-goog-credential|signature|sig)=)([^&#\s\"']+)"
)


def _normalize_key(key: str) -> str:
    return re.sub(r"[^a-z0-9]", "", key.lower())


def is_sensitive_key(key: str) -> bool:
    return _normalize_key(key) in _SENSITIVE_KEY_NORMALIZED


def redact_string(text: str) -> str:
    def replace_match(match: re.Match[str]) -> str:
        value = match.group(3)
        if value.startswith(("'", '"')) and value.endswith(value[0]):
            quote = value[0]
            return f"{match.group(1)}{match.group(2)}{quote}{REDACTED}{quote}"
        return f"{match.group(1)}{match.group(2)}{REDACTED}"

    redacted = _SIGNED_QUERY_RE.sub(lambda m: f"{m.group(1)}{REDACTED}", text)
    redacted = _KEY_VALUE_RE.sub(replace_match, redacted)
    redacted = _BEARER_RE.sub(f"Bearer {REDACTED}", redacted)
    return redacted


def redact_structure(value: Any) -> Any:
    if isinstance(value, str):
        return redact_string(value)
    if isinstance(value, Mapping):
        return {
            key: REDACTED if is_sensitive_key(str(key)) else redact_structure(val)
            for key, val in value.items()
        }
    if isinstance(value, tuple):
        return tuple(redact_structure(item) for item in value)
    if isinstance(value, list):
        return [redact_structure(item) for item in value]
    return value
