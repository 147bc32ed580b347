"""Tests for YAML configuration loading."""

import pytest

from zentpi.api.protocol import ZenProtocol
from zentpi.config import ZenConfig, load_config, parse_config
from zentpi.exceptions import ZenConfigurationError

CONFIG = """
tpi:
  unicast: true
  listen_port: 6970
  response_timeout: 0.5
  max_requests_per_controller: 4
  max_retries: 2
zencontrol:
  - id: 1
    label: Office
    host: 192.168.1.100
    mac: "00:11:22:33:44:55"
  - id: 2
    host: 192.168.1.101
    port: 5109
    filtering: true
"""


def write(tmp_path, text: str) -> str:
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return str(path)


def test_load_config(tmp_path):
    config = load_config(write(tmp_path, CONFIG))
    assert config.unicast is True
    assert config.listen_port == 6970
    assert config.response_timeout == 0.5
    assert config.max_requests_per_controller == 4
    assert config.max_retries == 2

    office, second = config.controllers
    assert office.id == 1
    assert office.label == "Office"
    assert office.port == 5108
    assert office.matches_mac("00:11:22:33:44:55")
    assert second.port == 5109
    assert second.filtering is True
    assert second.mac is None


def test_defaults():
    config = parse_config({"zencontrol": [{"id": 1, "host": "192.0.2.10"}]})
    assert config == ZenConfig(controllers=config.controllers)
    assert config.response_timeout == 1.0
    assert config.max_requests_per_controller == 8
    assert config.max_retries == 5
    assert config.unicast is False


def test_protocol_from_config(tmp_path):
    tpi = ZenProtocol.from_config(load_config(write(tmp_path, CONFIG)))
    assert tpi.unicast is True
    assert tpi.listen_ip == "0.0.0.0"
    assert tpi.listen_port == 6970
    assert tpi.max_requests_per_controller == 4
    assert [controller.id for controller in tpi.controllers] == [1, 2]


@pytest.mark.parametrize("document, message", [
    ([], "must be a mapping"),
    ({"tpi": {}}, "non-empty list"),
    ({"zencontrol": []}, "non-empty list"),
    ({"tpi": ["unicast"], "zencontrol": [{"id": 1, "host": "h"}]}, "'tpi' must be a mapping"),
    ({"tpi": {"colour": 1}, "zencontrol": [{"id": 1, "host": "h"}]}, "unknown keys: colour"),
    ({"zencontrol": ["192.0.2.10"]}, "must be a mapping"),
    ({"zencontrol": [{"id": 1}]}, "missing 'host'"),
    ({"zencontrol": [{"id": 1, "host": "h", "name": "x"}]}, "unknown keys: name"),
    ({"zencontrol": [{"id": "one", "host": "h"}]}, "is invalid"),
    ({"zencontrol": [{"id": 1, "host": "a"}, {"id": 1, "host": "b"}]}, "unique"),
    ({"tpi": {"max_requests_per_controller": 0}, "zencontrol": [{"id": 1, "host": "h"}]}, "at least 1"),
    ({"tpi": {"max_retries": -1}, "zencontrol": [{"id": 1, "host": "h"}]}, "negative"),
    ({"tpi": {"response_timeout": "soon"}, "zencontrol": [{"id": 1, "host": "h"}]}, "'tpi' is invalid"),
])
def test_invalid_config(document, message):
    with pytest.raises(ZenConfigurationError, match=message):
        parse_config(document)


def test_missing_file(tmp_path):
    with pytest.raises(ZenConfigurationError, match="Can't read"):
        load_config(str(tmp_path / "missing.yaml"))


def test_invalid_yaml(tmp_path):
    with pytest.raises(ZenConfigurationError, match="Invalid YAML"):
        load_config(write(tmp_path, "zencontrol: [\n"))


def test_empty_file(tmp_path):
    with pytest.raises(ZenConfigurationError, match="must be a mapping"):
        load_config(write(tmp_path, ""))
