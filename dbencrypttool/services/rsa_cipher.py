from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from dbencrypttool.errors import EnvelopeError, PayloadTooLarge, UnsupportedAlgorithm

_MODES = {"ECB", "NONE"}

_DIGESTS: dict[str, type[hashes.HashAlgorithm]] = {
    "MD5": hashes.MD5,
    "SHA1": hashes.SHA1,
    "SHA-1": hashes.SHA1,
    "SHA-224": hashes.SHA224,
    "SHA-256": hashes.SHA256,
    "SHA-384": hashes.SHA384,
    "SHA-512": hashes.SHA512,
    "SHA-512/224": hashes.SHA512_224,
    "SHA-512/256": hashes.SHA512_256,
}

_OAEP_WITH = re.compile(r"^OAEPWITH(?P<digest>.+)ANDMGF1PADDING$")


@dataclass(frozen=True)
class RsaCipher:
    """RSA public-key encryption driven by a Java-style transformation label.

    The label (``RSA/ECB/OAEPWithSHA-1AndMGF1Padding`` and friends) is what the
    consuming decrypter reads back out of the envelope, so it is kept verbatim in
    ``label`` and only interpreted here:

    - ``PKCS1Padding``: PKCS#1 v1.5
    - ``OAEPPadding``: OAEP with SHA-1 / MGF1(SHA-1)
    - ``OAEPWith<digest>AndMGF1Padding``: OAEP label hash ``<digest>``, MGF1 with
      SHA-1 (the default Java provider never changes the MGF1 digest from the name)
    """

    label: str
    oaep_digest: Optional[hashes.HashAlgorithm]

    @classmethod
    def from_label(cls, label: str) -> "RsaCipher":
        parts = label.split("/")
        # SHA-512/224 style digests contain a slash of their own
        if len(parts) > 3:
            parts = parts[:2] + ["/".join(parts[2:])]
        if len(parts) != 3:
            raise UnsupportedAlgorithm(f"expected <cipher>/<mode>/<padding>, got {label!r}")
        algo, mode, pad = (p.strip().upper() for p in parts)
        if algo != "RSA":
            raise UnsupportedAlgorithm(f"only RSA transformations are supported, got {label!r}")
        if mode not in _MODES:
            raise UnsupportedAlgorithm(f"unsupported RSA mode {parts[1]!r} in {label!r}")
        if pad == "PKCS1PADDING":
            return cls(label=label, oaep_digest=None)
        if pad == "OAEPPADDING":
            return cls(label=label, oaep_digest=hashes.SHA1())
        m = _OAEP_WITH.match(pad)
        if m and m.group("digest") in _DIGESTS:
            return cls(label=label, oaep_digest=_DIGESTS[m.group("digest")]())
        raise UnsupportedAlgorithm(f"unsupported RSA padding {parts[2]!r} in {label!r}")

    @property
    def is_oaep(self) -> bool:
        return self.oaep_digest is not None

    def padding(self) -> padding.AsymmetricPadding:
        if self.oaep_digest is None:
            return padding.PKCS1v15()
        return padding.OAEP(
            mgf=padding.MGF1(algorithm=hashes.SHA1()),
            algorithm=self.oaep_digest,
            label=None,
        )

    def max_payload(self, key_size_bits: int) -> int:
        k = (key_size_bits + 7) // 8
        if self.oaep_digest is None:
            return k - 11
        return k - 2 * self.oaep_digest.digest_size - 2

    def encrypt(self, public_key: rsa.RSAPublicKey, plaintext: bytes) -> bytes:
        limit = self.max_payload(public_key.key_size)
        if len(plaintext) > limit:
            raise PayloadTooLarge(len(plaintext), max(limit, 0))
        try:
            return public_key.encrypt(plaintext, self.padding())
        except ValueError as e:
            raise EnvelopeError(f"RSA encryption failed ({self.label}): {e}") from e
