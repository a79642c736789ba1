import copy
import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

log = logging.getLogger(__name__)

BACKUP_PREFIX_PATTERN = re.compile(r"[a-z0-9_-]+")


DEFAULT_CONFIG: Dict[str, Any] = {
    "network": {
        "expose_admin": False,
        "host": "",
        "port": 8090,
    },
    "auto_update": False,
    "superuser": {
        "email": "",
        "password": "",
    },
    "migrations": {
        "auto_apply": True,
        "dir": "pb_migrations",
    },
    "backup": {
        "enabled": False,
        "on_startup": True,
        "schedule": 0,
        "keep_last": 7,
        "prefix": "auto_",
    },
    "advanced": {
        "dev": False,
        "auto_migrate": True,
        "public_dir": "pb_public",
        "data_dir": "pb_data",
        "smtp": {
            "enabled": False,
            "host": "smtp.gmail.com",
            "port": 587,
            "username": "",
            "password": "",
            "local_name": "",
            "tls": True,
        },
        "s3": {
            "enabled": False,
            "bucket": "",
            "region": "",
            "endpoint": "",
            "access_key": "",
            "secret_key": "",
            "force_path_style": False,
        },
    },
}


class ConfigError(Exception):
    """Raised when the configuration file exists but cannot be parsed."""


def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Returns a copy of base with overrides applied recursively."""
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


class ConfigStore:
    """
    Loads, validates and persists the supervisor's YAML configuration.

    Two views are kept: `data` is the effective configuration (defaults merged
    with the file), `_document` is the file exactly as parsed. Write-backs
    replace only the changed scalar values in the file text, so comments and
    keys this class does not know about survive untouched. A key that does not
    exist yet forces a full re-dump of the merged document.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.data: Dict[str, Any] = copy.deepcopy(DEFAULT_CONFIG)
        self._document: Dict[str, Any] = {}
        self._loaded = False

    def load(self) -> Dict[str, Any]:
        """
        Reads the configuration file once and caches the result.

        :return: The effective configuration dictionary.
        :raises ConfigError: If the file is not valid YAML or not a mapping.
        """
        if self._loaded:
            return self.data

        if not self.path.exists():
            log.warning(f"Config file not found at '{self.path}', using defaults.")
            self._loaded = True
            return self.data

        try:
            document = yaml.safe_load(self.path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as e:
            raise ConfigError(f"Failed to load config '{self.path}': {e}") from e

        if document is None:
            document = {}
        if not isinstance(document, dict):
            raise ConfigError(f"Config '{self.path}' must be a mapping, got {type(document).__name__}")

        self._document = document
        self.data = _deep_merge(DEFAULT_CONFIG, document)
        self._loaded = True
        log.info(f"Configuration loaded from '{self.path}'")
        return self.data

    def section(self, *keys: str) -> Dict[str, Any]:
        """Returns a nested section of the effective configuration, e.g. section('advanced', 'smtp')."""
        node = self.data
        for key in keys:
            node = node[key]
        return node

    def validate(self) -> List[str]:
        """
        Checks the effective configuration against its invariants.

        :return: A list of human-readable errors, one per violation. Empty if valid.
        """
        errors = []
        host = self.data["network"]["host"]
        if host is not None and not isinstance(host, str):
            errors.append(f"Invalid network.host: {host!r} (must be a string)")

        port = self.data["network"]["port"]
        if not isinstance(port, int) or port < 1 or port > 65535:
            errors.append(f"Invalid port: {port} (must be 1-65535)")

        email = self.data["superuser"]["email"]
        if email and "@" not in email:
            errors.append(f"Invalid superuser email format: {email}")

        smtp = self.section("advanced", "smtp")
        if smtp["enabled"]:
            if not smtp["host"]:
                errors.append("SMTP enabled but host is empty")
            if not isinstance(smtp["port"], int) or smtp["port"] < 1:
                errors.append("SMTP enabled but port is invalid")

        s3 = self.section("advanced", "s3")
        if s3["enabled"]:
            if not s3["bucket"]:
                errors.append("S3 enabled but bucket is empty")
            if not s3["region"]:
                errors.append("S3 enabled but region is empty")

        backup = self.data["backup"]
        for key in ("keep_last", "schedule"):
            value = backup[key]
            if not isinstance(value, int) or isinstance(value, bool):
                errors.append(f"backup.{key} must be an integer, got {value!r}")
            elif value < 0:
                errors.append(f"backup.{key} must be >= 0")
        # The backend only accepts lowercase [a-z0-9_-] backup names.
        if not isinstance(backup["prefix"], str) or not BACKUP_PREFIX_PATTERN.fullmatch(backup["prefix"]):
            errors.append(f"backup.prefix must match [a-z0-9_-]+, got {backup['prefix']!r}")

        return errors

    def update_superuser_credentials(self, email: str, password: str) -> bool:
        """
        Persists new superuser credentials.

        :return: True if the file was written, False otherwise.
        """
        return self._update({"superuser": {"email": email, "password": password}})

    def update_advanced_settings(self, updates: Dict[str, Dict[str, Any]]) -> bool:
        """
        Persists SMTP and/or S3 settings.

        :param updates: A dictionary with optional 'smtp' and 's3' sub-dictionaries.
        :return: True if the file was written, False otherwise.
        """
        advanced = {name: values for name, values in updates.items() if name in ("smtp", "s3") and values}
        if not advanced:
            return False
        return self._update({"advanced": advanced})

    def _update(self, changes: Dict[str, Any]) -> bool:
        text = ""
        if self.path.exists():
            try:
                text = self.path.read_text(encoding="utf-8")
                current = yaml.safe_load(text) or {}
            except (OSError, yaml.YAMLError) as e:
                log.error(f"Failed to read config file '{self.path}' before update: {e}")
                return False
            if not isinstance(current, dict):
                log.error(f"Config '{self.path}' is no longer a mapping, refusing to update it")
                return False
        else:
            current = {}

        new_document = _deep_merge(current, changes)
        new_text = _splice_scalars(text, changes) if text else None
        if new_text is None or _safe_parse(new_text) != new_document:
            log.debug(f"Config '{self.path}' could not be edited in place, rewriting the whole document")
            new_text = yaml.safe_dump(new_document, sort_keys=False, allow_unicode=True)

        if not self._write(new_text):
            return False
        self._document = new_document
        self.data = _deep_merge(self.data, changes)
        return True

    def _write(self, text: str) -> bool:
        """Atomically writes the document text to disk."""
        temp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            temp_path.write_text(text, encoding="utf-8")
            temp_path.replace(self.path)
            log.debug(f"Configuration written to '{self.path}'")
            return True
        except OSError as e:
            log.error(f"Failed to update config file '{self.path}': {e}")
            return False
        finally:
            temp_path.unlink(missing_ok=True)


#* --- In-place editing ---
Edit = Tuple[int, int, int, str]


def _scalar_text(value: Any) -> str:
    # JSON scalars are valid YAML flow scalars.
    return json.dumps(value, ensure_ascii=False)


def _render_block(values: Dict[str, Any], indent: int) -> str:
    """Renders a dictionary as block-style YAML lines at the given indentation."""
    lines = []
    for key, value in values.items():
        if isinstance(value, dict):
            lines.append(f"{' ' * indent}{key}:")
            lines.append(_render_block(value, indent + 2).rstrip("\n"))
        else:
            lines.append(f"{' ' * indent}{key}: {_scalar_text(value)}")
    return "\n".join(line for line in lines if line) + "\n"


def _node_end(node: yaml.Node) -> int:
    if isinstance(node, (yaml.MappingNode, yaml.SequenceNode)) and node.value:
        last = node.value[-1]
        return _node_end(last[1] if isinstance(node, yaml.MappingNode) else last)
    return node.end_mark.index


def _insert_after_line(text: str, index: int, block: str, depth: int) -> Edit:
    """An edit inserting block on its own lines after the line containing index."""
    newline = text.find("\n", index)
    if newline == -1:
        return (len(text), len(text), depth, "\n" + block)
    return (newline + 1, newline + 1, depth, block)


def _is_empty_scalar(node: yaml.Node) -> bool:
    return isinstance(node, yaml.ScalarNode) and node.start_mark.index == node.end_mark.index


def _plan_edits(text: str, node: yaml.MappingNode, changes: Dict[str, Any], depth: int, edits: List[Edit]) -> bool:
    """
    Collects text edits applying changes to a block mapping node.

    :return: False if the document layout does not allow an in-place edit.
    """
    children = {
        key_node.value: (key_node, value_node)
        for key_node, value_node in node.value
        if isinstance(key_node, yaml.ScalarNode)
    }
    missing = {}
    for key, value in changes.items():
        if key not in children:
            missing[key] = value
            continue

        key_node, child = children[key]
        if isinstance(value, dict):
            if isinstance(child, yaml.MappingNode) and not child.flow_style and child.value:
                if not _plan_edits(text, child, value, depth + 1, edits):
                    return False
            elif _is_empty_scalar(child):
                block = _render_block(value, key_node.start_mark.column + 2)
                edits.append(_insert_after_line(text, child.end_mark.index, block, depth + 1))
            else:
                return False
        elif isinstance(child, yaml.ScalarNode):
            start, end = child.start_mark.index, child.end_mark.index
            replacement = _scalar_text(value)
            edits.append((start, end, depth, replacement if start != end else " " + replacement))
        else:
            return False

    if missing:
        indent = node.value[0][0].start_mark.column
        edits.append(_insert_after_line(text, _node_end(node), _render_block(missing, indent), depth))
    return True


def _splice_scalars(text: str, changes: Dict[str, Any]) -> Optional[str]:
    """
    Applies changes directly to the YAML text, leaving comments, quoting and
    layout of everything else untouched. Existing scalars are replaced at the
    positions the parser reports; missing keys are inserted as new lines at
    the end of their parent block mapping.

    :return: The edited text, or None if the document cannot be edited in place.
    """
    try:
        root = yaml.compose(text, Loader=yaml.SafeLoader)
    except yaml.YAMLError:
        return None

    if root is None:
        separator = "" if not text or text.endswith("\n") else "\n"
        return text + separator + _render_block(changes, 0)
    if not isinstance(root, yaml.MappingNode) or root.flow_style or not root.value:
        return None

    edits: List[Edit] = []
    if not _plan_edits(text, root, changes, 0, edits):
        return None

    # Same-position inserts: shallower blocks are applied first so deeper ones land above them.
    for start, end, _, replacement in sorted(edits, key=lambda e: (e[0], e[1], -e[2]), reverse=True):
        text = text[:start] + replacement + text[end:]
    return text


def _safe_parse(text: str) -> Any:
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError:
        return None


def load_config(path: Optional[Path] = None) -> ConfigStore:
    """Creates a ConfigStore for the given path (or the default one) and loads it."""
    from pbkeeper import settings

    store = ConfigStore(path or settings.CONFIG_PATH)
    store.load()
    return store
