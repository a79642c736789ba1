"""Tests for the YAML configuration store."""

from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from pbkeeper.local.config import DEFAULT_CONFIG, ConfigError, ConfigStore


def _document(**sections):
    """A minimal valid document with the given top-level sections merged in."""
    doc = {"network": {"port": 8090}}
    doc.update(sections)
    return doc


# -------------------------------------------------------------------
# Loading
# -------------------------------------------------------------------


def test_missing_file_uses_defaults(tmp_path):
    store = ConfigStore(tmp_path / "missing.yaml")
    data = store.load()
    assert data == DEFAULT_CONFIG
    assert store.validate() == []


def test_file_values_override_defaults(make_store):
    store = make_store({"network": {"port": 9000, "expose_admin": True}})
    assert store.section("network")["port"] == 9000
    assert store.section("network")["expose_admin"] is True
    # Untouched defaults are still present
    assert store.section("advanced", "smtp")["host"] == "smtp.gmail.com"


def test_malformed_yaml_raises(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("network: [unclosed", encoding="utf-8")
    with pytest.raises(ConfigError):
        ConfigStore(path).load()


def test_non_mapping_document_raises(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        ConfigStore(path).load()


def test_load_is_cached(make_store):
    store = make_store(_document())
    store.path.write_text(yaml.safe_dump({"network": {"port": 1234}}), encoding="utf-8")
    assert store.load()["network"]["port"] == 8090


# -------------------------------------------------------------------
# Validation
# -------------------------------------------------------------------


@pytest.mark.parametrize("port", [0, -1, 65536, 70000])
def test_invalid_port(make_store, port):
    store = make_store({"network": {"port": port}})
    assert store.validate() == [f"Invalid port: {port} (must be 1-65535)"]


@pytest.mark.parametrize("port", [1, 8090, 65535])
def test_valid_port_boundaries(make_store, port):
    assert make_store({"network": {"port": port}}).validate() == []


def test_email_without_at_sign(make_store):
    store = make_store(_document(superuser={"email": "admin.example.com", "password": "x"}))
    assert store.validate() == ["Invalid superuser email format: admin.example.com"]


def test_smtp_enabled_requires_host_and_port(make_store):
    store = make_store(_document(advanced={"smtp": {"enabled": True, "host": "", "port": 0}}))
    errors = store.validate()
    assert "SMTP enabled but host is empty" in errors
    assert "SMTP enabled but port is invalid" in errors


def test_smtp_disabled_is_not_checked(make_store):
    store = make_store(_document(advanced={"smtp": {"enabled": False, "host": ""}}))
    assert store.validate() == []


def test_s3_enabled_requires_bucket_and_region(make_store):
    store = make_store(_document(advanced={"s3": {"enabled": True}}))
    errors = store.validate()
    assert errors == ["S3 enabled but bucket is empty", "S3 enabled but region is empty"]


def test_negative_backup_values(make_store):
    store = make_store(_document(backup={"keep_last": -1, "schedule": -5}))
    errors = store.validate()
    assert "backup.keep_last must be >= 0" in errors
    assert "backup.schedule must be >= 0" in errors


def test_non_integer_backup_values(make_store):
    store = make_store(_document(backup={"keep_last": "7", "schedule": 1.5}))
    errors = store.validate()
    assert "backup.keep_last must be an integer, got '7'" in errors
    assert "backup.schedule must be an integer, got 1.5" in errors


@pytest.mark.parametrize("prefix", ["Auto_", "auto.", ""])
def test_backup_prefix_must_be_a_valid_backup_name(make_store, prefix):
    store = make_store(_document(backup={"prefix": prefix}))
    assert store.validate() == [f"backup.prefix must match [a-z0-9_-]+, got {prefix!r}"]


@pytest.mark.parametrize("host", [8080, ["a"]])
def test_non_string_host(make_store, host):
    store = make_store(_document(network={"port": 8090, "host": host}))
    assert store.validate() == [f"Invalid network.host: {host!r} (must be a string)"]


def test_one_message_per_violation(make_store):
    store = make_store({
        "network": {"port": 0},
        "superuser": {"email": "nope"},
        "backup": {"keep_last": -1},
    })
    assert len(store.validate()) == 3


# -------------------------------------------------------------------
# Write-back
# -------------------------------------------------------------------


def test_credentials_write_back_preserves_unknown_keys(make_store):
    store = make_store(_document(custom={"keep": "me"}, superuser={"email": "", "password": ""}))

    assert store.update_superuser_credentials("admin@localhost.local", "secret") is True

    on_disk = yaml.safe_load(store.path.read_text(encoding="utf-8"))
    assert on_disk["custom"] == {"keep": "me"}
    assert on_disk["superuser"] == {"email": "admin@localhost.local", "password": "secret"}
    assert on_disk["network"] == {"port": 8090}
    assert store.section("superuser")["email"] == "admin@localhost.local"


def test_credentials_write_back_creates_missing_file(tmp_path):
    store = ConfigStore(tmp_path / "new" / "config.yaml")
    store.load()
    assert store.update_superuser_credentials("a@b.local", "pw") is True
    assert yaml.safe_load(store.path.read_text(encoding="utf-8")) == {
        "superuser": {"email": "a@b.local", "password": "pw"}
    }


def test_advanced_settings_write_back(make_store):
    store = make_store(_document(advanced={"smtp": {"enabled": True, "host": "old.host"}}))

    assert store.update_advanced_settings({"smtp": {"host": "new.host", "port": 465}}) is True

    on_disk = yaml.safe_load(store.path.read_text(encoding="utf-8"))
    assert on_disk["advanced"]["smtp"] == {"enabled": True, "host": "new.host", "port": 465}
    assert store.section("advanced", "smtp")["host"] == "new.host"
    assert store.section("advanced", "smtp")["username"] == ""


def test_advanced_settings_ignores_unknown_sections(make_store):
    store = make_store(_document())
    assert store.update_advanced_settings({"network": {"port": 1}}) is False


def test_write_failure_returns_false_and_keeps_state(make_store):
    store = make_store(_document())
    with patch.object(Path, "replace", side_effect=OSError("read-only")):
        assert store.update_superuser_credentials("a@b.local", "pw") is False

    assert store.section("superuser")["email"] == ""
    assert not store.path.with_suffix(".yaml.tmp").exists()


def test_write_back_keeps_comments_and_layout(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "# pbkeeper settings\n"
        "network:\n"
        "  port: 8090  # listen port\n"
        "superuser:\n"
        "  email: ''   # filled in on first start\n"
        "  password:\n",
        encoding="utf-8",
    )
    store = ConfigStore(path)
    store.load()

    assert store.update_superuser_credentials("a@b.local", "pw") is True

    assert path.read_text(encoding="utf-8") == (
        "# pbkeeper settings\n"
        "network:\n"
        "  port: 8090  # listen port\n"
        "superuser:\n"
        "  email: \"a@b.local\"   # filled in on first start\n"
        "  password: \"pw\"\n"
    )


def test_write_back_inserts_missing_sections_below_existing_content(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("# comment\nnetwork:\n  port: 8090  # listen port\n", encoding="utf-8")
    store = ConfigStore(path)
    store.load()

    assert store.update_superuser_credentials("a@b.local", "pw") is True

    assert path.read_text(encoding="utf-8") == (
        "# comment\n"
        "network:\n"
        "  port: 8090  # listen port\n"
        "superuser:\n"
        "  email: \"a@b.local\"\n"
        "  password: \"pw\"\n"
    )


def test_write_back_inserts_missing_keys_into_nested_sections(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "advanced:\n"
        "  smtp:\n"
        "    enabled: true  # mail on\n"
        "superuser:\n",
        encoding="utf-8",
    )
    store = ConfigStore(path)
    store.load()

    assert store.update_advanced_settings({"smtp": {"host": "mail.example.com"}, "s3": {"bucket": "b"}}) is True
    assert store.update_superuser_credentials("a@b.local", "pw") is True

    assert path.read_text(encoding="utf-8") == (
        "advanced:\n"
        "  smtp:\n"
        "    enabled: true  # mail on\n"
        "    host: \"mail.example.com\"\n"
        "  s3:\n"
        "    bucket: \"b\"\n"
        "superuser:\n"
        "  email: \"a@b.local\"\n"
        "  password: \"pw\"\n"
    )


def test_flow_style_document_falls_back_to_full_dump(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("{network: {port: 8090}}\n", encoding="utf-8")
    store = ConfigStore(path)
    store.load()

    assert store.update_superuser_credentials("a@b.local", "pw") is True

    assert yaml.safe_load(path.read_text(encoding="utf-8")) == {
        "network": {"port": 8090},
        "superuser": {"email": "a@b.local", "password": "pw"},
    }
