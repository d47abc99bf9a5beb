import base64
import datetime
import os
import pathlib
import sys

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID
from sqlalchemy import create_engine, text

_ROOT = pathlib.Path(__file__).parent.parent
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

ALIAS = "wso2carbon"
STORE_PASSWORD = "changeit"
OAEP_SHA1 = "RSA/ECB/OAEPWithSHA-1AndMGF1Padding"


@pytest.fixture(autouse=True)
def _clean_tool_env(monkeypatch):
    """Environment overrides must not leak in from the host shell."""
    for k in list(os.environ):
        if k.upper().startswith("DBENCRYPTTOOL_"):
            monkeypatch.delenv(k, raising=False)
    yield


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def make_cert(key, cn: str = ALIAS) -> x509.Certificate:
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, cn)])
    now = datetime.datetime.now(datetime.timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=365))
        .sign(key, hashes.SHA256())
    )


@pytest.fixture(scope="session")
def cert(rsa_key):
    return make_cert(rsa_key)


@pytest.fixture(scope="session")
def cert_der(cert) -> bytes:
    return cert.public_bytes(serialization.Encoding.DER)


@pytest.fixture
def pkcs12_keystore(tmp_path, rsa_key, cert) -> pathlib.Path:
    path = tmp_path / "keystore.p12"
    path.write_bytes(
        pkcs12.serialize_key_and_certificates(
            ALIAS.encode(),
            rsa_key,
            cert,
            None,
            serialization.BestAvailableEncryption(STORE_PASSWORD.encode()),
        )
    )
    return path


def oaep_sha1_decrypt(key, stored_c: str) -> bytes:
    return key.decrypt(
        base64.b64decode(stored_c),
        padding.OAEP(mgf=padding.MGF1(algorithm=hashes.SHA1()), algorithm=hashes.SHA1(), label=None),
    )


SEED_ROWS = [
    (1, "hello"),
    (2, ""),
    (3, None),
    (4, "{not really json"),
    (5, "eyJhIjoxfQ=="),
    (6, "   "),
]


@pytest.fixture
def sqlite_db(tmp_path) -> pathlib.Path:
    """SQLite file with table T(id PK, v TEXT) seeded with the edge-case rows."""
    path = tmp_path / "app.db"
    eng = create_engine(f"sqlite:///{path}")
    with eng.begin() as c:
        c.execute(text("CREATE TABLE T (id INTEGER PRIMARY KEY, v TEXT)"))
        for rid, v in SEED_ROWS:
            c.execute(text("INSERT INTO T (id, v) VALUES (:id, :v)"), {"id": rid, "v": v})
    eng.dispose()
    return path


def execute(db_path, *statements: str) -> None:
    eng = create_engine(f"sqlite:///{db_path}")
    with eng.begin() as c:
        for s in statements:
            c.execute(text(s))
    eng.dispose()


def fetch(db_path, sql: str) -> list[tuple]:
    eng = create_engine(f"sqlite:///{db_path}")
    with eng.connect() as c:
        rows = [tuple(r) for r in c.execute(text(sql))]
    eng.dispose()
    return rows


@pytest.fixture
def write_properties(tmp_path, sqlite_db, pkcs12_keystore):
    """Write a properties file pointing at the SQLite db and PKCS12 store.

    Keyword overrides use underscores for dots (``keystore_alias=...``); a value
    of None drops the key.
    """

    def _write(name: str = "dbencrypttool.properties", **overrides) -> pathlib.Path:
        props = {
            "db.url": f"jdbc:sqlite:{sqlite_db}",
            "db.user": "root",
            "db.password": "secret",
            "db.driver": "org.sqlite.JDBC",
            "keystore.path": str(pkcs12_keystore),
            "keystore.password": STORE_PASSWORD,
            "keystore.alias": ALIAS,
            "keystore.type": "PKCS12",
            "encryption.algorithm": OAEP_SHA1,
            "targets": "T.v",
        }
        for k, v in overrides.items():
            key = k.replace("_", ".")
            if v is None:
                props.pop(key, None)
            else:
                props[key] = v
        lines = ["# dbencrypttool test config", ""]
        lines += [f"{k}={v}" for k, v in props.items()]
        path = tmp_path / name
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path

    return _write
