"""DSSE signed envelopes.

The envelope carries a base64 payload, its media type and one or more
signatures over the pre-authentication encoding (PAE) of the two:

    PAE(type, body) = "DSSEv1" SP LEN(type) SP type SP LEN(body) SP body

Each signature may carry RFC 3161 timestamp tokens over the raw
signature bytes.
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass, field
from typing import Any

from stepwitness.errors import SigningError, VerificationError
from stepwitness.signing.signer import Signer, Verifier

PAYLOAD_TYPE_IN_TOTO = "application/vnd.in-toto+json"
TIMESTAMP_TYPE_TSP = "tsp"


def pae(payload_type: str, body: bytes) -> bytes:
    """Pre-authentication encoding of a payload."""
    type_bytes = payload_type.encode("utf-8")
    return b" ".join([
        b"DSSEv1",
        str(len(type_bytes)).encode("ascii"),
        type_bytes,
        str(len(body)).encode("ascii"),
        body,
    ])


def _b64decode(value: str, what: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise ValueError(f"Invalid base64 in {what}") from e


def _field(data: Any, key: str, what: str) -> Any:
    """Required member of a JSON object, as ValueError when absent."""
    if not isinstance(data, dict):
        raise ValueError(f"Not a DSSE envelope: {what} must be an object")
    if key not in data:
        raise ValueError(f"Not a DSSE envelope: {what} is missing {key!r}")
    return data[key]


def _entries(data: dict[str, Any], key: str) -> list[Any]:
    value = data.get(key) or []
    if not isinstance(value, list):
        raise ValueError(f"Not a DSSE envelope: {key} must be a list")
    return value


@dataclass(frozen=True)
class Timestamp:
    """A countersignature from one timestamp authority."""

    data: bytes
    url: str = ""
    type: str = TIMESTAMP_TYPE_TSP

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "url": self.url,
            "data": base64.b64encode(self.data).decode("ascii"),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Timestamp:
        return cls(
            data=_b64decode(_field(data, "data", "timestamp"), "timestamp data"),
            url=data.get("url", ""),
            type=data.get("type", TIMESTAMP_TYPE_TSP),
        )


@dataclass(frozen=True)
class EnvelopeSignature:
    """One signature over the envelope's PAE."""

    keyid: str
    sig: bytes
    timestamps: tuple[Timestamp, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "keyid": self.keyid,
            "sig": base64.b64encode(self.sig).decode("ascii"),
        }
        if self.timestamps:
            result["timestamps"] = [t.to_dict() for t in self.timestamps]
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EnvelopeSignature:
        return cls(
            sig=_b64decode(_field(data, "sig", "signature"), "signature"),
            keyid=data.get("keyid", ""),
            timestamps=tuple(Timestamp.from_dict(t) for t in _entries(data, "timestamps")),
        )


@dataclass(frozen=True)
class Envelope:
    """Signed envelope. Immutable once produced."""

    payload: bytes
    payload_type: str = PAYLOAD_TYPE_IN_TOTO
    signatures: tuple[EnvelopeSignature, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "payload": base64.b64encode(self.payload).decode("ascii"),
            "payloadType": self.payload_type,
            "signatures": [s.to_dict() for s in self.signatures],
        }

    def to_json(self) -> str:
        """Compact JSON; key order matches the DSSE reference layout."""
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=True)

    def decoded_payload(self) -> Any:
        """Parse the payload as JSON."""
        return json.loads(self.payload.decode("utf-8"))

    def with_timestamps(self, timestamps: list[list[Timestamp]]) -> Envelope:
        """Copy of this envelope with timestamps appended per signature.

        Args:
            timestamps: One list of timestamps for each signature, in order
        """
        if len(timestamps) != len(self.signatures):
            raise ValueError("expected one timestamp list per signature")
        signatures = tuple(
            EnvelopeSignature(keyid=s.keyid, sig=s.sig, timestamps=s.timestamps + tuple(extra))
            for s, extra in zip(self.signatures, timestamps)
        )
        return Envelope(payload=self.payload, payload_type=self.payload_type, signatures=signatures)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Envelope:
        if "payload" not in data or "payloadType" not in data:
            raise ValueError("Not a DSSE envelope: missing payload or payloadType")
        return cls(
            payload=_b64decode(data["payload"], "payload"),
            payload_type=data["payloadType"],
            signatures=tuple(EnvelopeSignature.from_dict(s) for s in _entries(data, "signatures")),
        )

    @classmethod
    def from_json(cls, text: str | bytes) -> Envelope:
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError("Not a DSSE envelope: expected a JSON object")
        return cls.from_dict(data)


def sign_envelope(payload: bytes, signer: Signer, payload_type: str = PAYLOAD_TYPE_IN_TOTO) -> Envelope:
    """Sign a payload with exactly one signer.

    Raises:
        SigningError: If the signer fails or returns an empty signature
    """
    sig = signer.sign(pae(payload_type, payload))
    if not sig:
        raise SigningError("signer returned an empty signature")
    return Envelope(
        payload=payload,
        payload_type=payload_type,
        signatures=(EnvelopeSignature(keyid=signer.key_id, sig=sig),),
    )


def verify_envelope(envelope: Envelope, verifiers: list[Verifier]) -> list[str]:
    """Verify an envelope against trusted public keys.

    Returns:
        Key ids of verifiers that matched at least one signature

    Raises:
        VerificationError: If no signature verifies
    """
    if not envelope.signatures:
        raise VerificationError("envelope has no signatures")

    message = pae(envelope.payload_type, envelope.payload)
    matched: list[str] = []
    for verifier in verifiers:
        for signature in envelope.signatures:
            if signature.keyid and signature.keyid != verifier.key_id:
                continue
            if verifier.verify(message, signature.sig):
                matched.append(verifier.key_id)
                break

    if not matched:
        raise VerificationError("no signature could be verified with the provided keys")
    return matched
