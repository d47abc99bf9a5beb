"""Envelope rendering for the internal crypto provider.

Stored column value::

    base64( {"c":"<base64 RSA ciphertext>","t":"<algorithm label>","tp":"<SHA-1 thumbprint>","tpd":"SHA-1"} )

The decrypter picks its cipher from ``t`` and its key from ``tp``/``tpd``, so
``t`` must be the exact label used to encrypt ``c``.
"""

from __future__ import annotations

import base64
import binascii
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from pydantic import BaseModel, ConfigDict, ValidationError

from dbencrypttool.errors import EnvelopeError
from dbencrypttool.services.rsa_cipher import RsaCipher
from dbencrypttool.utils.digest import sha1_hex

THUMBPRINT_DIGEST = "SHA-1"

# base64 of '{"' and '{ "'
_B64_JSON_PREFIXES = ("eyJ", "e3si")


class Envelope(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", strict=True)

    c: str
    t: str
    tp: str
    tpd: str

    def to_json(self) -> str:
        return self.model_dump_json()

    def encode(self) -> str:
        return base64.b64encode(self.to_json().encode("utf-8")).decode("ascii")


class EnvelopeBuilder:
    """Binds key, thumbprint and algorithm once; ``build`` is called per row."""

    def __init__(self, public_key: rsa.RSAPublicKey, thumbprint: str, algorithm: str):
        self.public_key = public_key
        self.thumbprint = thumbprint
        self.algorithm = algorithm
        self.cipher = RsaCipher.from_label(algorithm)

    def envelope(self, plaintext: str) -> Envelope:
        ct = self.cipher.encrypt(self.public_key, plaintext.encode("utf-8"))
        return Envelope(
            c=base64.b64encode(ct).decode("ascii"),
            t=self.algorithm,
            tp=self.thumbprint,
            tpd=THUMBPRINT_DIGEST,
        )

    def build(self, plaintext: str) -> str:
        return self.envelope(plaintext).encode()


def build_envelope(
    plaintext: str,
    public_key: rsa.RSAPublicKey,
    cert: Optional[x509.Certificate],
    thumbprint: Optional[str],
    algorithm: str,
) -> str:
    """Encrypt ``plaintext`` and return the base64-of-JSON column value.

    ``thumbprint`` may be omitted when ``cert`` is given; it is then the SHA-1
    of the certificate's DER encoding.
    """
    if thumbprint is None:
        if cert is None:
            raise ValueError("either cert or thumbprint is required")
        thumbprint = sha1_hex(cert.public_bytes(serialization.Encoding.DER))
    return EnvelopeBuilder(public_key, thumbprint, algorithm).build(plaintext)


def looks_like_envelope(value: str) -> bool:
    """Cheap syntactic test for values that are already envelopes.

    No decoding is attempted, so cleartext that happens to start with ``{``,
    ``eyJ`` or ``e3si`` is treated as encrypted and left alone.
    """
    v = value.strip()
    if v.startswith("{"):
        return True
    return len(v) > 3 and v.startswith(_B64_JSON_PREFIXES)


def parse_envelope(stored: str) -> Envelope:
    """Decode a stored column value back into its envelope fields (no decryption)."""
    try:
        raw = base64.b64decode(stored.strip(), validate=True)
        return Envelope.model_validate_json(raw)
    except (binascii.Error, ValidationError) as e:
        raise EnvelopeError(f"not an envelope: {e}") from e
