"""Timestamp authority clients.

A timestamper countersigns a signature with a trusted time reference.
HTTPTimestamper speaks RFC 3161 over HTTP: it posts a DER TimeStampReq
carrying the SHA-256 of the signature and returns the TimeStampToken
from the authority's response.

Requests to multiple authorities are independent and issued
concurrently; the run only proceeds once every authority has answered.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from urllib.error import HTTPError, URLError
from urllib.parse import urlparse
from urllib.request import Request, urlopen

from stepwitness import __version__
from stepwitness.dsse import Envelope, Timestamp
from stepwitness.errors import TimestampError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30  # seconds
MAX_RESPONSE_BYTES = 1024 * 1024

# DER: OBJECT IDENTIFIER 2.16.840.1.101.3.4.2.1 (sha256)
_OID_SHA256 = bytes.fromhex("0609608648016503040201")


def _der(tag: int, content: bytes) -> bytes:
    """Encode one DER TLV."""
    length = len(content)
    if length < 0x80:
        header = bytes([tag, length])
    else:
        length_bytes = length.to_bytes((length.bit_length() + 7) // 8, "big")
        header = bytes([tag, 0x80 | len(length_bytes)]) + length_bytes
    return header + content


def _der_integer(value: int) -> bytes:
    raw = value.to_bytes(max(1, (value.bit_length() + 7) // 8), "big")
    if raw[0] & 0x80:
        raw = b"\x00" + raw
    return _der(0x02, raw)


def _read_tlv(data: bytes, offset: int) -> tuple[int, int, int]:
    """Read a DER header.

    Returns:
        Tuple of (tag, content_start, content_end)
    """
    if offset + 2 > len(data):
        raise ValueError("truncated DER")
    tag = data[offset]
    length = data[offset + 1]
    pos = offset + 2
    if length & 0x80:
        count = length & 0x7F
        if count == 0 or pos + count > len(data):
            raise ValueError("invalid DER length")
        length = int.from_bytes(data[pos:pos + count], "big")
        pos += count
    if pos + length > len(data):
        raise ValueError("truncated DER")
    return tag, pos, pos + length


def build_request(signature: bytes, nonce: int | None = None) -> bytes:
    """Build a DER TimeStampReq for a signature."""
    digest = hashlib.sha256(signature).digest()
    algorithm = _der(0x30, _OID_SHA256 + b"\x05\x00")
    imprint = _der(0x30, algorithm + _der(0x04, digest))
    if nonce is None:
        nonce = secrets.randbits(63)
    body = _der_integer(1) + imprint + _der_integer(nonce) + _der(0x01, b"\xff")
    return _der(0x30, body)


def parse_response(data: bytes) -> bytes:
    """Extract the TimeStampToken from a DER TimeStampResp.

    Raises:
        ValueError: If the response is malformed or not granted
    """
    tag, start, end = _read_tlv(data, 0)
    if tag != 0x30:
        raise ValueError("response is not a DER sequence")

    status_tag, status_start, status_end = _read_tlv(data, start)
    if status_tag != 0x30:
        raise ValueError("missing PKIStatusInfo")

    int_tag, int_start, int_end = _read_tlv(data, status_start)
    if int_tag != 0x02:
        raise ValueError("missing PKIStatus")
    status = int.from_bytes(data[int_start:int_end], "big")
    # 0 = granted, 1 = grantedWithMods
    if status not in (0, 1):
        raise ValueError(f"timestamp request rejected with status {status}")

    token = data[status_end:end]
    if not token:
        raise ValueError("response carries no timestamp token")
    return token


class Timestamper(ABC):
    """A timestamp authority endpoint."""

    @property
    @abstractmethod
    def url(self) -> str:
        """Identity of the authority, used in error reports."""
        pass

    @abstractmethod
    def timestamp(self, signature: bytes) -> bytes:
        """Countersign a signature.

        Returns:
            Opaque timestamp token bytes
        """
        pass


class HTTPTimestamper(Timestamper):
    """RFC 3161 timestamp authority reached over HTTP(S)."""

    def __init__(self, url: str, timeout: int = DEFAULT_TIMEOUT):
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https"):
            raise ValueError(f"Invalid URL scheme: {parsed.scheme}. Only http/https supported.")
        self._url = url
        self.timeout = timeout

    @property
    def url(self) -> str:
        return self._url

    def timestamp(self, signature: bytes) -> bytes:
        req = Request(self._url, data=build_request(signature), method="POST")
        req.add_header("Content-Type", "application/timestamp-query")
        req.add_header("Accept", "application/timestamp-reply")
        req.add_header("User-Agent", f"stepwitness/{__version__}")

        try:
            with urlopen(req, timeout=self.timeout) as response:
                data = response.read(MAX_RESPONSE_BYTES + 1)
        except HTTPError as e:
            raise TimestampError(self._url, f"HTTP error: {e.code}") from e
        except URLError as e:
            raise TimestampError(self._url, f"Network error: {e.reason}") from e
        except OSError as e:
            raise TimestampError(self._url, e) from e

        if len(data) > MAX_RESPONSE_BYTES:
            raise TimestampError(self._url, "response exceeds size limit")

        try:
            return parse_response(data)
        except ValueError as e:
            raise TimestampError(self._url, e) from e


def timestamp_signatures(envelope: Envelope, timestampers: list[Timestamper]) -> Envelope:
    """Countersign every signature of an envelope with every timestamper.

    Requests run concurrently. All must succeed: the first failure in
    configuration order is raised after every request has finished.

    Raises:
        TimestampError: If any timestamper fails
    """
    if not timestampers:
        return envelope

    def request(timestamper: Timestamper, sig: bytes) -> Timestamp:
        try:
            token = timestamper.timestamp(sig)
        except TimestampError:
            raise
        except Exception as e:
            raise TimestampError(timestamper.url, e) from e
        if not token:
            raise TimestampError(timestamper.url, "empty timestamp token")
        return Timestamp(data=token, url=timestamper.url)

    workers = len(timestampers) * len(envelope.signatures)
    with ThreadPoolExecutor(max_workers=max(1, workers), thread_name_prefix="tsa") as pool:
        futures = [
            [pool.submit(request, t, s.sig) for t in timestampers]
            for s in envelope.signatures
        ]

    per_signature: list[list[Timestamp]] = []
    failures: list[BaseException] = []
    for row in futures:
        collected = []
        for future in row:
            error = future.exception()
            if error is not None:
                logger.error("%s", error)
                failures.append(error)
            else:
                collected.append(future.result())
        per_signature.append(collected)

    if failures:
        raise failures[0]

    logger.info("Collected %d timestamp(s)", sum(len(row) for row in per_signature))
    return envelope.with_timestamps(per_signature)
