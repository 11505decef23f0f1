"""Profile loading and validation for YAML-based device profiles."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from commissionctl.core.errors import ProfileLoadError, ProfileValidationError
from commissionctl.core.model import (
    CommissioningFlow,
    CommissioningOptions,
    DeviceDefaults,
    DeviceProfile,
    DeviceType,
    DiscoveryCapabilities,
)
from commissionctl.core.server import DEFAULT_PORT

LOGGER = logging.getLogger(__name__)

_DEVICE_TYPES = {
    "on_off_light": DeviceType.ON_OFF_LIGHT,
    "on_off_plug_in_unit": DeviceType.ON_OFF_PLUG_IN_UNIT,
}
_DISCOVERY_FLAGS = {
    "on_network": DiscoveryCapabilities.ON_NETWORK,
    "ble": DiscoveryCapabilities.BLE,
    "soft_ap": DiscoveryCapabilities.SOFT_AP,
}


class UniqueKeyLoader(yaml.SafeLoader):
    """Safe YAML loader without implicit booleans that rejects duplicate keys."""

    # yes/no/on/off stay strings so the schema can reject them
    yaml_implicit_resolvers = {
        first_char: [(tag, regexp) for tag, regexp in resolvers if tag != "tag:yaml.org,2002:bool"]
        for first_char, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
    }

    def construct_mapping(self, node: yaml.MappingNode, deep: bool = False) -> dict[Any, Any]:
        seen: set[Any] = set()
        for key_node, _ in node.value:
            key = self.construct_object(key_node, deep=deep)
            if key in seen:
                raise ProfileValidationError(
                    f"Duplicate key '{key}' in YAML document (line {key_node.start_mark.line + 1})"
                )
            seen.add(key)
        return super().construct_mapping(node, deep=deep)


@dataclass(frozen=True)
class LoadedProfiles:
    profiles: dict[str, DeviceProfile]
    warnings: tuple[str, ...]


@lru_cache(maxsize=1)
def _profile_validator() -> Any:
    schema = json.loads(
        (resources.files("commissionctl.schemas") / "profile.schema.json").read_text(encoding="utf-8")
    )
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _profile_dirs() -> tuple[Path, Path]:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    xdg_data = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local/share"))
    return xdg_config / "commissionctl/profiles", xdg_data / "commissionctl/profiles"


def default_storage_dir(profile_id: str) -> Path:
    xdg_data = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local/share"))
    return xdg_data / "commissionctl/storage" / profile_id


def _load_document(path: Path | Traversable) -> dict[str, Any]:
    try:
        doc = yaml.load(path.read_text(encoding="utf-8"), Loader=UniqueKeyLoader)
    except OSError as exc:
        raise ProfileLoadError(f"Could not read profile file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ProfileValidationError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(doc, dict):
        raise ProfileValidationError(f"Profile file {path} must contain a mapping at root")
    return doc


def _build_profile(doc: dict[str, Any], source: Path | Traversable) -> DeviceProfile:
    validator = _profile_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ProfileValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    credentials = doc["credentials"]
    device_type = _DEVICE_TYPES[doc["device_type"]]
    defaults = DeviceDefaults(
        vendor_id=credentials["vendor_id"],
        product_id=credentials["product_id"],
        device_type=device_type,
        serial_prefix=doc.get("serial_prefix", doc["id"]),
        passcode=credentials.get("passcode"),
        discriminator=credentials.get("discriminator"),
    )

    discovery = DiscoveryCapabilities.NONE
    discovery_doc = doc.get("discovery", {"on_network": True})
    for key, flag in _DISCOVERY_FLAGS.items():
        if discovery_doc.get(key, False) in (True, "true"):
            discovery |= flag

    commissioning_doc = doc.get("commissioning", {})
    defaults_options = CommissioningOptions()
    commissioning = CommissioningOptions(
        flow=CommissioningFlow[commissioning_doc.get("flow", "standard").upper()],
        stage_timeout_s=float(commissioning_doc.get("stage_timeout_s", defaults_options.stage_timeout_s)),
        max_auth_attempts=int(commissioning_doc.get("max_auth_attempts", defaults_options.max_auth_attempts)),
        pbkdf_iterations=int(commissioning_doc.get("pbkdf_iterations", defaults_options.pbkdf_iterations)),
    )

    return DeviceProfile(
        id=doc["id"],
        name=doc["name"],
        vendor_name=doc["vendor_name"],
        product_name=doc["product_name"],
        port=int(doc.get("port", DEFAULT_PORT)),
        defaults=defaults,
        discovery=discovery,
        commissioning=commissioning,
    )


def _iter_packaged_profile_paths() -> list[Traversable]:
    profile_root = resources.files("commissionctl.profiles")
    return [item for item in profile_root.iterdir() if item.name.endswith((".yml", ".yaml"))]


def _iter_user_profile_paths() -> list[Path]:
    paths: list[Path] = []
    for directory in _profile_dirs():
        if not directory.exists() or not directory.is_dir():
            continue
        paths.extend(sorted(p for p in directory.iterdir() if p.suffix in {".yml", ".yaml"}))
    return paths


def load_profiles() -> LoadedProfiles:
    profiles: dict[str, DeviceProfile] = {}
    warnings: list[str] = []

    for path in sorted(_iter_packaged_profile_paths(), key=lambda p: p.name):
        profile = _build_profile(_load_document(path), path)
        profiles[profile.id] = profile

    for path in _iter_user_profile_paths():
        profile = _build_profile(_load_document(path), path)
        if profile.id in profiles:
            warning = f"User profile '{profile.id}' overrides packaged profile"
            LOGGER.warning(warning)
            warnings.append(warning)
        profiles[profile.id] = profile

    return LoadedProfiles(profiles=profiles, warnings=tuple(warnings))
