"""Remote content-addressed storage (Archivista).

Envelopes are uploaded with ``POST <url>/upload``; the server answers with
the gitoid under which the envelope is stored.
"""

from __future__ import annotations

import hashlib
import json
import logging
from urllib.error import HTTPError, URLError
from urllib.parse import urlparse
from urllib.request import Request, urlopen

from stepwitness import __version__
from stepwitness.config import ArchivistaOptions
from stepwitness.dsse import Envelope
from stepwitness.errors import PublishError
from stepwitness.sink import marshal_envelope

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30  # seconds


def compute_gitoid(data: bytes) -> str:
    """Git blob object id of data, using SHA-256."""
    header = f"blob {len(data)}\0".encode("ascii")
    return "gitoid:blob:sha256:" + hashlib.sha256(header + data).hexdigest()


class ArchivistaClient:
    """Client for an Archivista server."""

    def __init__(self, url: str, timeout: int = DEFAULT_TIMEOUT):
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https"):
            raise PublishError(f"Invalid URL scheme: {parsed.scheme}. Only http/https supported.")
        self.url = url.rstrip("/")
        self.timeout = timeout

    def store(self, envelope: Envelope) -> str:
        """Upload an envelope.

        Returns:
            The gitoid reported by the server

        Raises:
            PublishError: If the upload fails or the response is invalid
        """
        data = marshal_envelope(envelope)
        req = Request(f"{self.url}/upload", data=data, method="POST")
        req.add_header("Content-Type", "application/json")
        req.add_header("User-Agent", f"stepwitness/{__version__}")

        try:
            with urlopen(req, timeout=self.timeout) as response:
                body = response.read()
        except HTTPError as e:
            raise PublishError(f"failed to store artifact in archivista: HTTP error: {e.code}") from e
        except URLError as e:
            raise PublishError(f"failed to store artifact in archivista: Network error: {e.reason}") from e
        except OSError as e:
            raise PublishError(f"failed to store artifact in archivista: {e}") from e

        try:
            gitoid = json.loads(body).get("gitoid", "")
        except (ValueError, AttributeError) as e:
            raise PublishError(f"invalid response from archivista: {e}") from e
        if not gitoid:
            raise PublishError("archivista response did not include a gitoid")

        logger.debug("Local gitoid %s", compute_gitoid(data))
        return gitoid


def publish(
    options: ArchivistaOptions,
    envelope: Envelope,
    client: ArchivistaClient | None = None,
) -> str | None:
    """Store an envelope remotely when publishing is enabled.

    Returns:
        The gitoid, or None when publishing is disabled
    """
    if not options.enable:
        return None

    client = client or ArchivistaClient(options.url)
    gitoid = client.store(envelope)
    logger.info("Stored in archivista as %s", gitoid)
    return gitoid
