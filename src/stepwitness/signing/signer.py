"""Cryptographic signing identities.

A Signer wraps one private key loaded through the ``cryptography``
library. Supported key types:
- Ed25519
- ECDSA (SHA-256 for P-256, SHA-384 for P-384 and larger)
- RSA (PSS padding, SHA-256)
"""

from __future__ import annotations

import hashlib

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from stepwitness.errors import SigningError, VerificationError


def _ec_hash(curve: ec.EllipticCurve) -> hashes.HashAlgorithm:
    if curve.key_size > 256:
        return hashes.SHA384()
    return hashes.SHA256()


def public_key_id(public_key) -> str:
    """Key id: hex SHA-256 of the DER SubjectPublicKeyInfo."""
    der = public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return hashlib.sha256(der).hexdigest()


class Signer:
    """Signing identity backed by a single private key."""

    ALG_ED25519 = "Ed25519"
    ALG_ECDSA = "ECDSA"
    ALG_RSA_PSS = "RSA-PSS"

    def __init__(self, private_key, source: str = "") -> None:
        """Initialize signer.

        Args:
            private_key: A ``cryptography`` Ed25519, EC or RSA private key
            source: Human-readable description of where the key came from

        Raises:
            SigningError: If the key type is not supported
        """
        if isinstance(private_key, Ed25519PrivateKey):
            self.algorithm = self.ALG_ED25519
        elif isinstance(private_key, ec.EllipticCurvePrivateKey):
            self.algorithm = self.ALG_ECDSA
        elif isinstance(private_key, rsa.RSAPrivateKey):
            self.algorithm = self.ALG_RSA_PSS
        else:
            raise SigningError(f"Unsupported key type: {type(private_key).__name__}")

        self._private_key = private_key
        self.source = source
        self.public_key = private_key.public_key()
        self.key_id = public_key_id(self.public_key)

    def __repr__(self) -> str:
        return f"Signer(algorithm={self.algorithm!r}, key_id={self.key_id[:16]!r}, source={self.source!r})"

    def sign(self, message: bytes) -> bytes:
        """Sign a message.

        Raises:
            SigningError: If signing fails
        """
        try:
            if self.algorithm == self.ALG_ED25519:
                return self._private_key.sign(message)
            if self.algorithm == self.ALG_ECDSA:
                curve = self._private_key.curve
                return self._private_key.sign(message, ec.ECDSA(_ec_hash(curve)))
            return self._private_key.sign(
                message,
                padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=padding.PSS.DIGEST_LENGTH),
                hashes.SHA256(),
            )
        except Exception as e:
            raise SigningError(f"Signing with key {self.key_id[:16]} failed: {e}") from e

    def verifier(self) -> Verifier:
        """Verifier for this signer's public key."""
        return Verifier(self.public_key)

    def public_key_pem(self) -> bytes:
        """Public key in PEM SubjectPublicKeyInfo form."""
        return self.public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )

    @classmethod
    def generate(cls) -> Signer:
        """Create a signer with a fresh Ed25519 key."""
        return cls(Ed25519PrivateKey.generate(), source="generated")

    @classmethod
    def generate_keys(cls) -> tuple[bytes, bytes]:
        """Generate a new Ed25519 key pair.

        Returns:
            Tuple of (private_key_pem, public_key_pem)
        """
        private_key = Ed25519PrivateKey.generate()
        private_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        public_pem = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        return (private_pem, public_pem)


class Verifier:
    """Checks signatures against one public key."""

    def __init__(self, public_key) -> None:
        if not isinstance(
            public_key, (Ed25519PublicKey, ec.EllipticCurvePublicKey, rsa.RSAPublicKey)
        ):
            raise VerificationError(f"Unsupported public key type: {type(public_key).__name__}")
        self.public_key = public_key
        self.key_id = public_key_id(public_key)

    @classmethod
    def from_pem(cls, data: bytes) -> Verifier:
        """Load a verifier from a PEM public key."""
        try:
            return cls(serialization.load_pem_public_key(data))
        except ValueError as e:
            raise VerificationError(f"Invalid public key: {e}") from e

    def verify(self, message: bytes, signature: bytes) -> bool:
        """Verify a signature.

        Returns:
            True if valid, False otherwise
        """
        key = self.public_key
        try:
            if isinstance(key, Ed25519PublicKey):
                key.verify(signature, message)
            elif isinstance(key, ec.EllipticCurvePublicKey):
                key.verify(signature, message, ec.ECDSA(_ec_hash(key.curve)))
            else:
                key.verify(
                    signature,
                    message,
                    padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=padding.PSS.AUTO),
                    hashes.SHA256(),
                )
        except InvalidSignature:
            return False
        return True
