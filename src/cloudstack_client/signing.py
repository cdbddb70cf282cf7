"""Canonical request signing for the CloudStack API.

The API verifies a signature computed over the sorted, RFC 3986 encoded and
lower-cased query string. The exact sequence is:

1. sort parameters by key;
2. percent-encode keys and values (space becomes ``%20``);
3. lower-case the resulting query, for the HMAC input only;
4. HMAC-SHA1 with the signing key, base64, then percent-encode;
5. append ``signature=`` to the original-case query.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
from collections.abc import Mapping
from typing import Any
from urllib.parse import quote


def build_query(parameters: Mapping[str, Any]) -> str:
    """Return the sorted, percent-encoded query string for ``parameters``."""

    pairs = []
    for key in sorted(parameters):
        value = parameters[key]
        if value is None:
            continue
        pairs.append(f"{quote(str(key), safe='')}={quote(_stringify(value), safe='')}")
    return "&".join(pairs)


def sign(query: str, key: str) -> str:
    """Return the percent-encoded signature for an already built query."""

    digest = hmac.new(key.encode("utf-8"), query.lower().encode("utf-8"), hashlib.sha1).digest()
    return quote(base64.b64encode(digest).decode("ascii"), safe="")


def signed_query(parameters: Mapping[str, Any], key: str) -> str:
    query = build_query(parameters)
    return f"{query}&signature={sign(query, key)}".strip("?&")


def signed_url(api_url: str, parameters: Mapping[str, Any], key: str) -> str:
    """Return ``api_url`` with the signed query for ``parameters`` appended."""

    return f"{api_url}?{signed_query(parameters, key)}"


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


__all__ = ["build_query", "sign", "signed_query", "signed_url"]
