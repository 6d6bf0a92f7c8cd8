"""Device profile loading: packaged YAML profiles plus user overrides."""

from __future__ import annotations

import json
import logging
import os
import re
from collections.abc import Iterator
from dataclasses import dataclass
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import validators
from jsonschema.exceptions import best_match

from sensorctl.core.errors import ProfileLoadError, ProfileValidationError
from sensorctl.core.model import CCCD_UUID, DeviceProfile

_UUID_RE = re.compile(r"^[0-9a-f]{4}$|^[0-9a-f]{8}$|^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")
_BLUETOOTH_BASE_UUID_SUFFIX = "-0000-1000-8000-00805f9b34fb"
_PROFILE_SUFFIXES = (".yml", ".yaml")
LOGGER = logging.getLogger(__name__)


class ProfileYamlLoader(yaml.SafeLoader):
    """Safe loader that refuses a profile with a key given twice."""


def _construct_profile_mapping(
    loader: ProfileYamlLoader, node: yaml.MappingNode, deep: bool = False
) -> dict[Any, Any]:
    mapping: dict[Any, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            line = key_node.start_mark.line + 1
            raise ProfileValidationError(f"Key '{key}' repeated on line {line}")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


ProfileYamlLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_profile_mapping,
)


@dataclass(frozen=True)
class LoadedProfiles:
    profiles: dict[str, DeviceProfile]
    warnings: tuple[str, ...]


def _profile_validator() -> Any:
    schema = json.loads(
        resources.files("sensorctl.schemas").joinpath("profile.schema.json").read_text(encoding="utf-8")
    )
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def user_profile_dirs() -> list[Path]:
    """Directories searched for user profiles, lowest precedence first."""
    home = Path.home()
    data_home = Path(os.environ.get("XDG_DATA_HOME") or home / ".local/share")
    config_home = Path(os.environ.get("XDG_CONFIG_HOME") or home / ".config")
    return [data_home / "sensorctl/profiles", config_home / "sensorctl/profiles"]


def _profile_sources() -> Iterator[tuple[bool, Path | Traversable]]:
    """Yield `(is_user, path)` with packaged profiles first."""
    packaged = resources.files("sensorctl.profiles")
    for item in sorted(packaged.iterdir(), key=lambda p: p.name):
        if item.name.endswith(_PROFILE_SUFFIXES):
            yield False, item
    for directory in user_profile_dirs():
        if not directory.is_dir():
            continue
        for path in sorted(directory.iterdir()):
            if path.suffix in _PROFILE_SUFFIXES:
                yield True, path


def _read_profile_document(path: Path | Traversable) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ProfileLoadError(f"Could not read profile file {path}: {exc}") from exc

    try:
        document = yaml.load(content, Loader=ProfileYamlLoader)
    except yaml.YAMLError as exc:
        raise ProfileValidationError(f"Invalid YAML in {path}: {exc}") from exc
    except ProfileValidationError as exc:
        raise ProfileValidationError(f"{path}: {exc}") from exc

    if not isinstance(document, dict):
        raise ProfileValidationError(f"Profile file {path} must contain a mapping at root")
    return document


def normalize_uuid(value: str, *, context: str) -> str:
    """Lower-case a UUID and expand 16/32-bit short forms to 128-bit."""
    normalized = value.strip().lower()
    if not _UUID_RE.match(normalized):
        raise ProfileValidationError(
            f"{context} must be a 16-bit, 32-bit, or 128-bit UUID string"
        )
    if len(normalized) == 4:
        return f"0000{normalized}{_BLUETOOTH_BASE_UUID_SUFFIX}"
    if len(normalized) == 8:
        return f"{normalized}{_BLUETOOTH_BASE_UUID_SUFFIX}"
    return normalized


def _build_profile(document: dict[str, Any], source: Path | Traversable, validator: Any) -> DeviceProfile:
    error = best_match(validator.iter_errors(document))
    if error is not None:
        where = ".".join(str(p) for p in error.absolute_path)
        where = f" ({where})" if where else ""
        raise ProfileValidationError(f"Invalid profile {source}{where}: {error.message}")

    profile_id = document["id"]
    gatt = document["gatt"]
    scan = document.get("scan", {})
    stream = document.get("stream", {})

    def uuid_field(key: str, default: str | None = None) -> str:
        return normalize_uuid(gatt.get(key, default), context=f"{profile_id}.gatt.{key}")

    return DeviceProfile(
        id=profile_id,
        target_name=document["target_name"],
        service_uuid=uuid_field("service_uuid"),
        characteristic_uuid=uuid_field("characteristic_uuid"),
        cccd_uuid=uuid_field("cccd_uuid", CCCD_UUID),
        scan_timeout_s=float(scan.get("timeout_s", 10.0)),
        connect_timeout_s=float(gatt.get("connect_timeout_s", 10.0)),
        max_pending_bytes=int(stream.get("max_pending_bytes", 4096)),
        deduplicate=bool(scan.get("deduplicate", True)),
    )


def load_profiles() -> LoadedProfiles:
    """Load packaged profiles, then let user profiles replace them by id."""
    validator = _profile_validator()
    profiles: dict[str, DeviceProfile] = {}
    packaged_ids: set[str] = set()
    warnings: list[str] = []

    for is_user, path in _profile_sources():
        profile = _build_profile(_read_profile_document(path), path, validator)
        if not is_user:
            packaged_ids.add(profile.id)
        elif profile.id in packaged_ids:
            warning = f"User profile '{profile.id}' from {path} overrides packaged profile"
            LOGGER.warning(warning)
            warnings.append(warning)
            packaged_ids.discard(profile.id)
        elif profile.id in profiles:
            LOGGER.debug("Profile '%s' replaced by %s", profile.id, path)
        profiles[profile.id] = profile

    return LoadedProfiles(profiles=profiles, warnings=tuple(warnings))
