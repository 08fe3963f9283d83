"""Configuration loading and validation for the YAML gateway config."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from fognode.core.errors import ConfigLoadError, ConfigValidationError
from fognode.core.model import (
    BLEConfig,
    DeviceServiceConfig,
    GatewayConfig,
    MatchRules,
    ServerConfig,
    VariantConfig,
)

MICROBIT_NAME = "bbc micro:bit"
SERVER_PORT_ENV = "FOGNODE_SERVER_PORT"
LOGGER = logging.getLogger(__name__)

DEFAULT_DEVICES = (
    VariantConfig(variant="smartvase", match=MatchRules(name_contains=(MICROBIT_NAME,))),
)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ConfigValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class LoadedConfig:
    config: GatewayConfig
    source: Path | None
    warnings: tuple[str, ...]


def _load_schema_validator() -> Any:
    schema_text = resources.files("fognode.schemas").joinpath("config.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def default_config_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "fognode/config.yaml"


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigLoadError(f"Could not read config file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ConfigValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigValidationError(f"Config file {path} must contain a mapping at root")
    return loaded


def _build_variant(doc: dict[str, Any]) -> VariantConfig:
    match = doc.get("match", {})
    return VariantConfig(
        variant=doc["variant"],
        match=MatchRules(
            name_contains=tuple(match.get("name_contains", [])),
            address_prefix=tuple(p.strip().upper() for p in match.get("address_prefix", [])),
        ),
        room=doc.get("room", "default"),
    )


def _build_config(doc: dict[str, Any], source: Path | str) -> GatewayConfig:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ConfigValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    device_service = None
    if "device_service" in doc:
        section = doc["device_service"]
        device_service = DeviceServiceConfig(
            host=section["host"],
            port=int(section["port"]),
            timeout_s=float(section.get("timeout_s", 10.0)),
        )

    server_doc = doc.get("server", {})
    server = ServerConfig(
        host=server_doc.get("host", ServerConfig.host),
        port=int(server_doc.get("port", ServerConfig.port)),
    )

    ble_doc = doc.get("ble", {})
    ble = BLEConfig(
        scan_period_s=float(ble_doc.get("scan_period_s", BLEConfig.scan_period_s)),
        mtu=int(ble_doc.get("mtu", BLEConfig.mtu)),
        action_settle_s=float(ble_doc.get("action_settle_s", BLEConfig.action_settle_s)),
        adapter=ble_doc.get("adapter"),
    )

    if "devices" in doc:
        devices = tuple(_build_variant(entry) for entry in doc["devices"])
    else:
        devices = DEFAULT_DEVICES

    return GatewayConfig(server=server, ble=ble, devices=devices, device_service=device_service)


def _apply_env_overrides(config: GatewayConfig) -> GatewayConfig:
    port = os.environ.get(SERVER_PORT_ENV)
    if not port:
        return config
    try:
        value = int(port)
    except ValueError as exc:
        raise ConfigValidationError(f"{SERVER_PORT_ENV} must be an integer, got '{port}'") from exc
    return GatewayConfig(
        server=ServerConfig(host=config.server.host, port=value),
        ble=config.ble,
        devices=config.devices,
        device_service=config.device_service,
    )


def _semantic_warnings(config: GatewayConfig) -> list[str]:
    warnings: list[str] = []
    if config.device_service is None and any(v.variant == "smartvase" for v in config.devices):
        warnings.append(
            "No device_service configured; smartvase readings will not be forwarded to the device service"
        )
    generic = [v for v in config.devices if v.variant == "generic"]
    if len(generic) > 1:
        warnings.append("Multiple generic variants configured; only the first one is used as fallback")
    return warnings


def load_config(path: Path | None = None) -> LoadedConfig:
    source: Path | None = path
    if source is None:
        candidate = default_config_path()
        source = candidate if candidate.is_file() else None

    doc = _read_yaml(source) if source is not None else {}
    config = _apply_env_overrides(_build_config(doc, source or "<defaults>"))

    warnings = _semantic_warnings(config)
    for warning in warnings:
        LOGGER.warning(warning)

    return LoadedConfig(config=config, source=source, warnings=tuple(warnings))
