from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Literal

from jproperties import ParseError, Properties
from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from dbencrypttool.errors import ConfigMissing

log = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "dbencrypttool.properties"

REQUIRED_KEYS = (
    "db.url",
    "db.user",
    "db.password",
    "db.driver",
    "keystore.path",
    "keystore.password",
    "keystore.alias",
    "encryption.algorithm",
    "targets",
)


def _field_name(key: str) -> str:
    return key.strip().replace(".", "_").lower()


def _property_key(field: str) -> str:
    for key in REQUIRED_KEYS:
        if _field_name(key) == field:
            return key
    return field.replace("_", ".")


@dataclass(frozen=True)
class Target:
    table: str
    column: str

    def __str__(self) -> str:
        return f"{self.table}.{self.column}"


def parse_targets(raw: str) -> tuple[Target, ...]:
    """Split ``T1.C1, T2.C2`` into ordered targets; malformed tokens are dropped."""
    out: list[Target] = []
    for token in raw.split(","):
        parts = [p.strip() for p in token.strip().split(".")]
        if len(parts) != 2 or not all(parts):
            if token.strip():
                log.debug("ignoring target token %r", token.strip())
            continue
        out.append(Target(table=parts[0], column=parts[1]))
    return tuple(out)


class ToolSettings(BaseSettings):
    """Immutable run configuration.

    Values come from the properties file; ``DBENCRYPTTOOL_<FIELD>`` environment
    variables override them (e.g. ``DBENCRYPTTOOL_DB_PASSWORD``).
    """

    db_url: str = Field(min_length=1)
    db_user: str = Field(min_length=1)
    db_password: str = Field(min_length=1)
    db_driver: str = Field(min_length=1)

    keystore_path: str = Field(min_length=1)
    keystore_password: str = Field(min_length=1)
    keystore_alias: str = Field(min_length=1)
    keystore_type: str = "JKS"

    encryption_algorithm: str = Field(min_length=1)
    targets: str = Field(min_length=1)

    strict: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["text", "json"] = "text"

    model_config = SettingsConfigDict(
        env_prefix="DBENCRYPTTOOL_",
        frozen=True,
        str_strip_whitespace=True,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # environment beats the properties file
        return env_settings, init_settings

    @property
    def target_list(self) -> tuple[Target, ...]:
        return parse_targets(self.targets)


def settings_from_mapping(values: dict[str, str | None]) -> ToolSettings:
    kwargs: dict[str, str] = {}
    known = set(ToolSettings.model_fields)
    for key, value in values.items():
        name = _field_name(key)
        if name not in known:
            log.debug("ignoring unknown property %s", key)
            continue
        if value is not None:
            kwargs[name] = value
    try:
        return ToolSettings(**kwargs)
    except ValidationError as e:
        keys = tuple(sorted({_property_key(str(err["loc"][0])) for err in e.errors() if err["loc"]}))
        raise ConfigMissing(f"missing or invalid configuration keys: {', '.join(keys)}", keys) from e


def load_settings(path: str = DEFAULT_CONFIG_PATH) -> ToolSettings:
    if not os.path.isfile(path):
        raise ConfigMissing(f"configuration file not found: {path}")
    props = Properties()
    try:
        with open(path, "rb") as f:
            props.load(f, "utf-8")
    except (OSError, UnicodeDecodeError, ParseError) as e:
        raise ConfigMissing(f"cannot read configuration file {path}: {e}") from e
    return settings_from_mapping(dict(props.properties))
