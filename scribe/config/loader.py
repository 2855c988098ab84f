"""Settings file loading, migration and atomic persistence."""

import json
import os
import shutil
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from loguru import logger

from scribe.config.defaults import (
    LEGACY_SETTINGS_KEY,
    MEMORIES_KEY,
    SETTINGS_KEY,
    apply_missing_defaults,
)
from scribe.config.schema import Config


def get_settings_path() -> Path:
    """Get the default settings file path."""
    from scribe.utils.helpers import get_data_path

    return get_data_path() / "settings.json"


def read_settings_file(path: Path) -> dict[str, Any]:
    """Read the raw settings document, migrating legacy layout in place on disk."""
    if not path.exists():
        return {}
    with open(path, encoding="utf-8") as f:
        raw = json.load(f)
    migrated, changed = migrate_settings(raw)
    if changed:
        logger.info("migrated legacy settings key '{}' -> '{}'", LEGACY_SETTINGS_KEY, SETTINGS_KEY)
        backup_settings_file(path)
        write_settings_file(path, migrated)
    return migrated


def load_config(settings_path: Path | None = None) -> Config:
    """
    Load configuration from the settings file or create default.

    Args:
        settings_path: Optional path to the settings file. Uses default if not provided.

    Returns:
        Loaded configuration object.
    """
    path = settings_path or get_settings_path()
    try:
        document = read_settings_file(path)
    except (json.JSONDecodeError, ValueError) as e:
        logger.warning("Failed to load settings from {}: {}; using defaults", path, e)
        return Config()
    return config_from_document(document)


def config_from_document(document: dict[str, Any]) -> Config:
    """Validate the extension section of a settings document."""
    section = document.get(SETTINGS_KEY)
    if not isinstance(section, dict):
        return Config()
    snake = convert_keys({k: v for k, v in section.items() if k != MEMORIES_KEY})
    apply_missing_defaults(snake)
    return Config.model_validate(snake)


def save_config(config: Config, settings_path: Path | None = None) -> None:
    """
    Save configuration into the settings file, keeping stored memories intact.

    Args:
        config: Configuration to save.
        settings_path: Optional path to save to. Uses default if not provided.
    """
    path = settings_path or get_settings_path()
    document = read_settings_file(path)
    section = document.get(SETTINGS_KEY)
    memories = section.get(MEMORIES_KEY, {}) if isinstance(section, dict) else {}
    new_section = convert_to_camel(config.to_settings())
    new_section[MEMORIES_KEY] = memories
    document[SETTINGS_KEY] = new_section
    write_settings_file(path, document)


def migrate_settings(data: dict[str, Any]) -> tuple[dict[str, Any], bool]:
    """Move the legacy extension blob to the current key, verbatim and only once.

    Returns:
        (migrated_data, changed)
    """
    if not isinstance(data, dict):
        raise ValueError("Settings root must be a JSON object")
    if LEGACY_SETTINGS_KEY in data and SETTINGS_KEY not in data:
        migrated = dict(data)
        migrated[SETTINGS_KEY] = migrated.pop(LEGACY_SETTINGS_KEY)
        return migrated, True
    return data, False


def backup_settings_file(path: Path) -> None:
    """Create timestamped backup of the settings file before a migration rewrite."""
    if not path.exists():
        return
    timestamp = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    backup = path.with_name(f"{path.stem}.backup.{timestamp}{path.suffix}")
    shutil.copy2(path, backup)
    try:
        backup.chmod(0o600)
    except OSError:
        pass


def write_settings_file(path: Path, document: dict[str, Any]) -> None:
    """Atomically write the settings document as JSON with secure permissions."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_name = f".{path.name}.tmp-{os.getpid()}"
    tmp_path = path.with_name(tmp_name)
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(document, f, indent=2, ensure_ascii=False)
    try:
        tmp_path.chmod(0o600)
    except OSError:
        pass
    os.replace(tmp_path, path)
    try:
        path.chmod(0o600)
    except OSError:
        pass


def convert_keys(data: Any) -> Any:
    """Convert camelCase keys to snake_case for Pydantic."""
    if isinstance(data, dict):
        return {camel_to_snake(k): convert_keys(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_keys(item) for item in data]
    return data


def convert_to_camel(data: Any) -> Any:
    """Convert snake_case keys to camelCase."""
    if isinstance(data, dict):
        return {snake_to_camel(k): convert_to_camel(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_to_camel(item) for item in data]
    return data


def camel_to_snake(name: str) -> str:
    """Convert camelCase to snake_case."""
    result = []
    for i, char in enumerate(name):
        if char.isupper() and i > 0:
            result.append("_")
        result.append(char.lower())
    return "".join(result)


def snake_to_camel(name: str) -> str:
    """Convert snake_case to camelCase."""
    components = name.split("_")
    return components[0] + "".join(x.title() for x in components[1:])
