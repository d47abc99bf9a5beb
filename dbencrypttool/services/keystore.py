from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12

from dbencrypttool.errors import KeystoreError
from dbencrypttool.utils.digest import sha1_hex

log = logging.getLogger(__name__)

STORE_TYPES = ("JKS", "JCEKS", "PKCS12", "PEM")


@dataclass(frozen=True)
class KeystoreEntry:
    alias: str
    certificate: x509.Certificate
    der: bytes  # certificate encoding exactly as stored

    @property
    def public_key(self) -> rsa.RSAPublicKey:
        return self.certificate.public_key()  # type: ignore[return-value]

    @property
    def thumbprint(self) -> str:
        return sha1_hex(self.der)


def _read(path: str) -> bytes:
    try:
        return Path(path).read_bytes()
    except OSError as e:
        raise KeystoreError(f"cannot read keystore {path}: {e}") from e


def _cert_from_der(der: bytes, alias: str) -> x509.Certificate:
    try:
        return x509.load_der_x509_certificate(der)
    except ValueError as e:
        raise KeystoreError(f"entry {alias!r} does not hold an X.509 certificate") from e


def _load_jks(path: str, password: str, alias: str) -> bytes:
    # Lazy import: only JKS/JCEKS stores need pyjks
    import jks

    try:
        ks = jks.KeyStore.load(path, password, try_decrypt_keys=False)
    except OSError as e:
        raise KeystoreError(f"cannot read keystore {path}: {e}") from e
    except jks.util.KeystoreSignatureException as e:
        raise KeystoreError(f"keystore {path}: wrong password or corrupted file") from e
    except (jks.util.KeystoreException, ValueError) as e:
        raise KeystoreError(f"keystore {path}: {e}") from e

    wanted = alias.lower()
    for name, entry in ks.certs.items():
        if name.lower() == wanted:
            return entry.cert
    for name, entry in ks.private_keys.items():
        if name.lower() == wanted:
            if not entry.cert_chain:
                raise KeystoreError(f"private key entry {alias!r} has no certificate chain")
            _cert_type, der = entry.cert_chain[0]
            return der
    raise KeystoreError(f"Certificate not found: {alias}")


def _load_pkcs12(path: str, password: str, alias: str) -> bytes:
    data = _read(path)
    try:
        store = pkcs12.load_pkcs12(data, password.encode("utf-8"))
    except ValueError as e:
        raise KeystoreError(f"keystore {path}: wrong password or corrupted file") from e

    wanted = alias.lower()
    candidates = ([store.cert] if store.cert else []) + list(store.additional_certs)
    for c in candidates:
        name = (c.friendly_name or b"").decode("utf-8", "replace")
        if name.lower() == wanted:
            return c.certificate.public_bytes(serialization.Encoding.DER)
    raise KeystoreError(f"Certificate not found: {alias}")


def _load_pem(path: str, alias: str) -> bytes:
    try:
        certs = x509.load_pem_x509_certificates(_read(path))
    except ValueError as e:
        raise KeystoreError(f"{path}: no PEM certificate found") from e
    if len(certs) != 1:
        raise KeystoreError(f"{path}: expected exactly one certificate, found {len(certs)} (alias {alias!r})")
    return certs[0].public_bytes(serialization.Encoding.DER)


def load_keystore(path: str, password: str, alias: str, store_type: str = "JKS") -> KeystoreEntry:
    """Resolve ``alias`` in the keystore at ``path`` to its certificate.

    Any failure (missing file, bad password, unknown alias, non-RSA key) is a
    :class:`KeystoreError`; the caller aborts before touching the database.
    """
    kind = store_type.strip().upper()
    if kind in ("JKS", "JCEKS"):
        der = _load_jks(path, password, alias)
    elif kind == "PKCS12":
        der = _load_pkcs12(path, password, alias)
    elif kind == "PEM":
        der = _load_pem(path, alias)
    else:
        raise KeystoreError(f"unsupported keystore type {store_type!r} (expected one of {', '.join(STORE_TYPES)})")

    cert = _cert_from_der(der, alias)
    if not isinstance(cert.public_key(), rsa.RSAPublicKey):
        raise KeystoreError(f"certificate {alias!r} does not carry an RSA public key")
    entry = KeystoreEntry(alias=alias, certificate=cert, der=der)
    log.debug("keystore %s (%s): alias=%s subject=%s", path, kind, alias, cert.subject.rfc4514_string())
    return entry
