"""
Reconciles the backend's SMTP and S3 settings with the YAML configuration.

At startup the configuration wins and is pushed to the backend. At shutdown
the backend wins, so edits made in the admin dashboard are written back.
"""
import logging
from typing import Any, Dict, Tuple

from pbkeeper.local.config import ConfigStore

log = logging.getLogger(__name__)

# (config key, backend key) pairs compared in each direction.
SMTP_PUSH_FIELDS = (("host", "host"), ("port", "port"), ("username", "username"), ("password", "password"))
S3_PUSH_FIELDS = (("bucket", "bucket"), ("region", "region"), ("endpoint", "endpoint"))
SMTP_PULL_FIELDS = SMTP_PUSH_FIELDS
S3_PULL_FIELDS = S3_PUSH_FIELDS + (("access_key", "accessKey"), ("secret_key", "secret"))

# The backend never returns these in plain text; an empty value means "hidden", not "cleared".
SECRET_BACKEND_KEYS = ("password", "secret")


def _differs(config: Dict[str, Any], remote: Dict[str, Any], fields: Tuple[Tuple[str, str], ...]) -> bool:
    for config_key, backend_key in fields:
        remote_value = remote.get(backend_key)
        if backend_key in SECRET_BACKEND_KEYS and not remote_value:
            continue
        if remote_value != config.get(config_key):
            return True
    return False


#* --- Config -> Backend ---
def smtp_payload(smtp: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "enabled": True,
        "host": smtp["host"],
        "port": smtp["port"],
        "username": smtp["username"],
        "password": smtp["password"],
        "authMethod": "PLAIN",
        "tls": smtp["tls"],
        "localName": smtp.get("local_name") or "localhost",
    }

def s3_payload(s3: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "enabled": True,
        "bucket": s3["bucket"],
        "region": s3["region"],
        "endpoint": s3["endpoint"],
        "accessKey": s3["access_key"],
        "secret": s3["secret_key"],
        "forcePathStyle": s3["force_path_style"],
    }

def push_settings(client, advanced: Dict[str, Any], status) -> bool:
    """
    Pushes enabled SMTP/S3 sections to the backend when they differ.

    :param client: An authenticated BackendClient.
    :param advanced: The 'advanced' section of the effective configuration.
    :param status: The StartupStatus receiving warnings.
    :return: True if the backend was updated.
    """
    smtp, s3 = advanced["smtp"], advanced["s3"]
    if not smtp["enabled"] and not s3["enabled"]:
        return False

    try:
        remote = client.get_settings()
        updates = {}
        if smtp["enabled"] and _differs(smtp, remote.get("smtp") or {}, SMTP_PUSH_FIELDS):
            updates["smtp"] = smtp_payload(smtp)
        if s3["enabled"] and _differs(s3, remote.get("s3") or {}, S3_PUSH_FIELDS):
            updates["s3"] = s3_payload(s3)

        if not updates:
            log.debug("Backend settings already match the configuration.")
            return False

        client.update_settings(updates)
        log.debug(f"Backend settings updated from config: {', '.join(updates)}")
        return True
    except Exception as e:
        status.warn(f"Failed to configure settings: {e}")
        return False


#* --- Backend -> Config ---
def _smtp_from_backend(remote: Dict[str, Any], current: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "host": remote.get("host") or "",
        "port": remote.get("port") or 587,
        "username": remote.get("username") or "",
        "password": remote.get("password") or current.get("password", ""),
        "local_name": remote.get("localName") or "",
        "tls": remote.get("tls") is not False,
    }

def _s3_from_backend(remote: Dict[str, Any], current: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "bucket": remote.get("bucket") or "",
        "region": remote.get("region") or "",
        "endpoint": remote.get("endpoint") or "",
        "access_key": remote.get("accessKey") or "",
        "secret_key": remote.get("secret") or current.get("secret_key", ""),
        "force_path_style": remote.get("forcePathStyle") is True,
    }

def pull_settings(client, store: ConfigStore) -> bool:
    """
    Writes backend SMTP/S3 values back to the config file for enabled sections that differ.
    Failures are logged as warnings and never raised.

    :return: True if the config file was updated.
    """
    smtp, s3 = store.section("advanced", "smtp"), store.section("advanced", "s3")
    if not smtp["enabled"] and not s3["enabled"]:
        return False

    try:
        remote = client.get_settings()
        updates = {}
        remote_smtp, remote_s3 = remote.get("smtp"), remote.get("s3")
        if smtp["enabled"] and remote_smtp and _differs(smtp, remote_smtp, SMTP_PULL_FIELDS):
            updates["smtp"] = _smtp_from_backend(remote_smtp, smtp)
        if s3["enabled"] and remote_s3 and _differs(s3, remote_s3, S3_PULL_FIELDS):
            updates["s3"] = _s3_from_backend(remote_s3, s3)

        if not updates:
            return False
        if not store.update_advanced_settings(updates):
            log.warning("Failed to sync settings to config: could not write config file")
            return False
        log.info("Config file updated with latest backend settings")
        return True
    except Exception as e:
        log.warning(f"Failed to sync settings to config: {e}")
        return False
