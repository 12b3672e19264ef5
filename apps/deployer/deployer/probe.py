"""Post-deploy check of the public Function URL.

Issues a single GET and reports what came back. Network failures are
recorded on the result rather than raised: the deployment itself has
already succeeded by the time this runs.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

BODY_PREVIEW_CHARS = 500

# An AuthType NONE URL answers these only when the public invoke permission is missing.
DENIED_STATUS_CODES = frozenset({401, 403})


@dataclass
class ProbeResult:
    url: str
    status_code: Optional[int] = None
    body_preview: str = ""
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        if self.error is not None or self.status_code is None:
            return False
        return self.status_code < 500 and self.status_code not in DENIED_STATUS_CODES

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "status_code": self.status_code,
            "ok": self.ok,
            "body_preview": self.body_preview,
            "error": self.error,
        }


def probe_function_url(
    url: str,
    timeout: float = 10.0,
    transport: Optional[httpx.BaseTransport] = None,
) -> ProbeResult:
    """GET the Function URL once and summarise the response."""
    try:
        with httpx.Client(timeout=timeout, transport=transport) as client:
            response = client.get(url)
    except httpx.HTTPError as exc:
        logger.warning("Probe of %s failed: %s", url, exc)
        return ProbeResult(url=url, error=str(exc))

    result = ProbeResult(
        url=url,
        status_code=response.status_code,
        body_preview=response.text[:BODY_PREVIEW_CHARS],
    )
    if result.ok:
        logger.info("Probe of %s returned %d", url, response.status_code)
    else:
        logger.warning("Probe of %s returned %d", url, response.status_code)
    return result
