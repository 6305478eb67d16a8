from __future__ import annotations

import json
import socket
import urllib.error
import urllib.request
from typing import Any

from ..errors import ExternalServiceError, NotFoundError


def request_json(
    method: str,
    url: str,
    headers: dict[str, str] | None = None,
    payload: dict[str, Any] | None = None,
    timeout: float = 30,
) -> Any:
    data = json.dumps(payload).encode("utf-8") if payload is not None else None
    request = urllib.request.Request(url, data=data, method=method)
    request.add_header("Accept", "application/json")
    if data is not None:
        request.add_header("Content-Type", "application/json")
    for key, value in (headers or {}).items():
        request.add_header(key, value)
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            raw = response.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        body = exc.read().decode("utf-8", errors="ignore")
        if exc.code == 404:
            raise NotFoundError(f"not_found: {url}", status=404) from exc
        raise ExternalServiceError(
            f"http_error {exc.code}: {body[:500]}",
            status=exc.code,
            transient=exc.code == 429 or exc.code >= 500,
        ) from exc
    except urllib.error.URLError as exc:
        raise ExternalServiceError(f"network_error: {exc.reason}", transient=True) from exc
    except (socket.timeout, TimeoutError) as exc:
        raise ExternalServiceError(f"timeout: {url}", transient=True) from exc
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return {"raw": raw}
