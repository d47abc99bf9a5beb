import pytest
from pydantic import ValidationError

from dbencrypttool.config import Target, load_settings, parse_targets, settings_from_mapping
from dbencrypttool.errors import ConfigMissing

BASE = {
    "db.url": "jdbc:mysql://localhost:3306/wso2",
    "db.user": "root",
    "db.password": "secret",
    "db.driver": "com.mysql.cj.jdbc.Driver",
    "keystore.path": "wso2carbon.jks",
    "keystore.password": "wso2carbon",
    "keystore.alias": "wso2carbon",
    "encryption.algorithm": "RSA/ECB/OAEPWithSHA-1AndMGF1Padding",
    "targets": "IDN_OAUTH2_ACCESS_TOKEN.ACCESS_TOKEN, IDN_OAUTH_CONSUMER_APPS.CONSUMER_SECRET",
}


def test_parse_targets_keeps_order_and_drops_malformed_tokens():
    raw = " IDN_OAUTH2_ACCESS_TOKEN.ACCESS_TOKEN, bad, a.b.c, .x, y., IDN_OAUTH_CONSUMER_APPS . CONSUMER_SECRET ,"
    assert parse_targets(raw) == (
        Target("IDN_OAUTH2_ACCESS_TOKEN", "ACCESS_TOKEN"),
        Target("IDN_OAUTH_CONSUMER_APPS", "CONSUMER_SECRET"),
    )
    assert str(parse_targets("t.c")[0]) == "t.c"


def test_settings_from_mapping_defaults():
    s = settings_from_mapping(BASE)
    assert s.db_url == BASE["db.url"]
    assert s.keystore_type == "JKS"
    assert s.strict is False
    assert s.log_format == "text"
    assert [str(t) for t in s.target_list] == [
        "IDN_OAUTH2_ACCESS_TOKEN.ACCESS_TOKEN",
        "IDN_OAUTH_CONSUMER_APPS.CONSUMER_SECRET",
    ]


def test_settings_are_immutable():
    s = settings_from_mapping(BASE)
    with pytest.raises(ValidationError):
        s.db_password = "other"


def test_missing_key_is_reported_by_property_name():
    values = dict(BASE)
    del values["keystore.alias"]
    with pytest.raises(ConfigMissing) as ei:
        settings_from_mapping(values)
    assert ei.value.keys == ("keystore.alias",)


def test_blank_value_counts_as_missing():
    values = dict(BASE, **{"db.password": "   "})
    with pytest.raises(ConfigMissing) as ei:
        settings_from_mapping(values)
    assert "db.password" in ei.value.keys


def test_load_settings_reads_properties_file(tmp_path):
    path = tmp_path / "dbencrypttool.properties"
    lines = ["# migration config", ""]
    lines += [f"  {k} = {v}  " for k, v in BASE.items()]
    lines += ["db.password=pa$$word", "strict=true", "some.unknown=1"]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    s = load_settings(str(path))
    assert s.db_user == "root"
    assert s.db_password == "pa$$word"
    assert s.strict is True
    assert len(s.target_list) == 2


def test_missing_file(tmp_path):
    with pytest.raises(ConfigMissing):
        load_settings(str(tmp_path / "nope.properties"))


def test_environment_overrides_file_values(monkeypatch):
    monkeypatch.setenv("DBENCRYPTTOOL_DB_PASSWORD", "from-env")
    monkeypatch.setenv("DBENCRYPTTOOL_TARGETS", "A.B")
    s = settings_from_mapping(BASE)
    assert s.db_password == "from-env"
    assert s.target_list == (Target("A", "B"),)


def test_environment_can_supply_missing_secret(monkeypatch):
    values = dict(BASE)
    del values["keystore.password"]
    monkeypatch.setenv("DBENCRYPTTOOL_KEYSTORE_PASSWORD", "wso2carbon")
    assert settings_from_mapping(values).keystore_password == "wso2carbon"


def test_hash_and_quotes_inside_values_are_kept(tmp_path):
    path = tmp_path / "dbencrypttool.properties"
    lines = ["# leading comment line", "   # indented comment line"]
    lines += [f"{k}={v}" for k, v in BASE.items() if k not in ("keystore.password", "db.password", "db.user")]
    lines += ["keystore.password=pass #1", "db.password='quoted'", 'db.user="root"']
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    s = load_settings(str(path))
    assert s.keystore_password == "pass #1"
    assert s.db_password == "'quoted'"
    assert s.db_user == '"root"'
