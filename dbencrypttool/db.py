from __future__ import annotations

import logging
from urllib.parse import parse_qsl, urlsplit

from sqlalchemy import create_engine
from sqlalchemy.engine import URL, Connection, Dialect, Engine, make_url
from sqlalchemy.exc import ArgumentError, SQLAlchemyError
from sqlalchemy.pool import NullPool

from dbencrypttool.errors import DbConnectError, UnsafeIdentifier

log = logging.getLogger(__name__)

# JDBC subprotocol -> SQLAlchemy drivername
JDBC_DEFAULT_DRIVERS = {
    "mysql": "mysql+pymysql",
    "mariadb": "mariadb+pymysql",
    "postgresql": "postgresql+psycopg",
    "sqlite": "sqlite",
}

# JDBC driver classes we recognise; they imply the default SQLAlchemy driver
JDBC_DRIVER_CLASSES = {
    "com.mysql.cj.jdbc.Driver": "mysql",
    "com.mysql.jdbc.Driver": "mysql",
    "org.mariadb.jdbc.Driver": "mariadb",
    "org.postgresql.Driver": "postgresql",
    "org.sqlite.JDBC": "sqlite",
}


def _from_jdbc(url: str) -> URL:
    rest = url[len("jdbc:"):]
    sub, _, tail = rest.partition(":")
    sub = sub.lower()
    if sub not in JDBC_DEFAULT_DRIVERS:
        raise DbConnectError(f"unsupported JDBC URL (subprotocol {sub!r}); use a SQLAlchemy URL instead")
    if sub == "sqlite":
        # jdbc:sqlite:/path/to.db | jdbc:sqlite::memory:
        path = tail.split("?", 1)[0]
        return URL.create("sqlite", database=None if path in ("", ":memory:") else path)

    parts = urlsplit(rest)
    try:
        port = parts.port
    except ValueError as e:
        raise DbConnectError(f"invalid port in {url!r}") from e
    dropped = dict(parse_qsl(parts.query))
    if dropped:
        log.debug("dropping JDBC driver options: %s", ", ".join(sorted(dropped)))
    return URL.create(
        JDBC_DEFAULT_DRIVERS[sub],
        host=parts.hostname,
        port=port,
        database=parts.path.lstrip("/") or None,
    )


def _apply_driver(url: URL, driver: str) -> URL:
    d = (driver or "").strip()
    if not d or d in JDBC_DRIVER_CLASSES or d.lower() == url.get_backend_name():
        return url
    if "+" in d:
        backend = d.split("+", 1)[0].lower()
        if backend != url.get_backend_name():
            log.warning("db.driver %s does not match database %s; ignoring it", d, url.get_backend_name())
            return url
        return url.set(drivername=d)
    log.debug("db.driver %s not used outside the JVM; keeping %s", d, url.drivername)
    return url


def to_sqlalchemy_url(db_url: str, user: str, password: str, driver: str = "") -> URL:
    """Turn the configured connection string (JDBC or SQLAlchemy form) into a URL."""
    raw = db_url.strip()
    if raw.lower().startswith("jdbc:"):
        url = _from_jdbc(raw)
    else:
        try:
            url = make_url(raw)
        except ArgumentError as e:
            raise DbConnectError(f"cannot parse database URL: {e}") from e
    url = _apply_driver(url, driver)
    if url.get_backend_name() != "sqlite":
        if url.username is None:
            url = url.set(username=user)
        if url.password is None:
            url = url.set(password=password)
    return url


def scrub_url(url: URL) -> str:
    return url.render_as_string(hide_password=True)


def create_tool_engine(url: URL) -> Engine:
    # One connection for the whole run; no pooling needed
    try:
        return create_engine(url, poolclass=NullPool, future=True, echo=False)
    except (SQLAlchemyError, ImportError) as e:
        raise DbConnectError(f"cannot create engine for {scrub_url(url)}: {e}") from e


def open_connection(engine: Engine) -> Connection:
    try:
        return engine.connect()
    except SQLAlchemyError as e:
        raise DbConnectError(f"cannot connect to {scrub_url(engine.url)}: {e}") from e


def quote_identifier(dialect: Dialect, name: str) -> str:
    """Always-quoted identifier; names containing the quote character are refused."""
    prep = dialect.identifier_preparer
    forbidden = {prep.initial_quote, prep.final_quote, "\x00"}
    if not name or any(q and q in name for q in forbidden):
        raise UnsafeIdentifier(f"refusing unsafe identifier {name!r}")
    return prep.quote_identifier(name)
