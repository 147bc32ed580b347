"""
YAML configuration for zentpi.

Example config.yaml:

    tpi:
      unicast: false
      response_timeout: 1.0
      max_requests_per_controller: 8
      max_retries: 5
    zencontrol:
      - id: 1
        label: Office
        host: 192.168.1.100
        port: 5108
        mac: 00:11:22:33:44:55
"""

from dataclasses import dataclass, field, fields
from typing import Any, Optional

import yaml

from .api.models import ZenController
from .exceptions import ZenConfigurationError
from .io.command import ClientConst


@dataclass
class ZenConfig:
    unicast: bool = False
    listen_ip: Optional[str] = None
    listen_port: Optional[int] = None
    response_timeout: float = ClientConst.DEFAULT_TIMEOUT
    max_requests_per_controller: int = ClientConst.DEFAULT_MAX_REQUESTS_PER_CONTROLLER
    max_retries: int = ClientConst.DEFAULT_MAX_RETRIES
    print_traffic: bool = False
    controllers: list[ZenController] = field(default_factory=list)


CONTROLLER_KEYS = {"id", "host", "port", "mac", "label", "filtering"}


def _controller_from_dict(entry: Any, index: int) -> ZenController:
    if not isinstance(entry, dict):
        raise ZenConfigurationError(f"zencontrol[{index}] must be a mapping")
    for key in ("id", "host"):
        if key not in entry:
            raise ZenConfigurationError(f"zencontrol[{index}] is missing '{key}'")
    unknown = set(entry) - CONTROLLER_KEYS
    if unknown:
        raise ZenConfigurationError(f"zencontrol[{index}] has unknown keys: {', '.join(sorted(unknown))}")
    try:
        kwargs = dict(entry)
        kwargs["id"] = int(kwargs["id"])
        kwargs["host"] = str(kwargs["host"])
        if "port" in kwargs:
            kwargs["port"] = int(kwargs["port"])
        if kwargs.get("mac") is not None:
            kwargs["mac"] = str(kwargs["mac"])
        if "filtering" in kwargs:
            kwargs["filtering"] = bool(kwargs["filtering"])
    except (TypeError, ValueError) as e:
        raise ZenConfigurationError(f"zencontrol[{index}] is invalid: {e}")
    return ZenController(**kwargs)


def parse_config(document: Any) -> ZenConfig:
    """Build a ZenConfig from an already-parsed YAML document"""
    if not isinstance(document, dict):
        raise ZenConfigurationError("Configuration must be a mapping")

    settings = document.get("tpi") or {}
    if not isinstance(settings, dict):
        raise ZenConfigurationError("'tpi' must be a mapping")
    known = {f.name for f in fields(ZenConfig)} - {"controllers"}
    unknown = set(settings) - known
    if unknown:
        raise ZenConfigurationError(f"'tpi' has unknown keys: {', '.join(sorted(unknown))}")

    entries = document.get("zencontrol")
    if not isinstance(entries, list) or not entries:
        raise ZenConfigurationError("'zencontrol' must be a non-empty list of controllers")
    controllers = [_controller_from_dict(entry, index) for index, entry in enumerate(entries)]

    ids = [controller.id for controller in controllers]
    if len(ids) != len(set(ids)):
        raise ZenConfigurationError("Controller ids must be unique")

    try:
        config = ZenConfig(controllers=controllers, **settings)
        config.response_timeout = float(config.response_timeout)
        config.max_requests_per_controller = int(config.max_requests_per_controller)
        config.max_retries = int(config.max_retries)
        if config.listen_port is not None:
            config.listen_port = int(config.listen_port)
    except (TypeError, ValueError) as e:
        raise ZenConfigurationError(f"'tpi' is invalid: {e}")
    if config.max_requests_per_controller < 1:
        raise ZenConfigurationError("max_requests_per_controller must be at least 1")
    if config.max_retries < 0:
        raise ZenConfigurationError("max_retries can't be negative")
    return config


def load_config(path: str) -> ZenConfig:
    """Read a YAML configuration file"""
    try:
        with open(path, "r", encoding="utf-8") as fh:
            document = yaml.safe_load(fh)
    except OSError as e:
        raise ZenConfigurationError(f"Can't read {path}: {e}")
    except yaml.YAMLError as e:
        raise ZenConfigurationError(f"Invalid YAML in {path}: {e}")
    return parse_config(document)
