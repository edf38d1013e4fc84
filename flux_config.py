"""
Run Configuration
=================
Loads and validates the YAML run configuration.

Example:

    target: http://localhost:8000
    concurrency: 20
    duration: 2m
    mode: async
    scenarios:
      - name: login
        method: POST
        url: /api/login
        body: '{"user": "john"}'
        extract:
          token: $.token
      - name: profile
        method: GET
        url: /api/me
        headers:
          Authorization: Bearer {{ token }}
        depends_on: login
    output:
      json: results/output.json
      html: results/output.html
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, List, Dict, Any

import yaml

from flux_errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 10
DEFAULT_DURATION = "30s"
DEFAULT_METHOD = "GET"


class ExecutionMode(Enum):
    ASYNC = "async"  # all workers launched at once
    SYNC = "sync"    # staggered launch, pause between iterations


@dataclass
class MultipartPart:
    """One multipart form part: ``file`` (reads ``path``) or ``field`` (sends ``value``)."""
    part_type: str
    name: str
    path: Optional[str] = None
    value: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MultipartPart":
        if not isinstance(data, dict):
            raise ConfigError(f"Multipart part must be a mapping, got: {data!r}")
        if "type" not in data or "name" not in data:
            raise ConfigError("Multipart part requires 'type' and 'name'")
        return cls(
            part_type=str(data["type"]),
            name=str(data["name"]),
            path=_optional_str(data.get("path")),
            value=_optional_str(data.get("value")),
        )

    def validate(self, where: str = ""):
        suffix = f" in scenario '{where}'" if where else ""
        if self.part_type == "file" and self.path is None:
            raise ConfigError(f"Multipart file type requires 'path' field{suffix}")
        if self.part_type == "field" and self.value is None:
            raise ConfigError(f"Multipart field type requires 'value' field{suffix}")


@dataclass(frozen=True)
class Scenario:
    """One named step of a scenario chain. Shared read-only by all workers."""
    name: str
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[str] = None
    multipart: Optional[List[MultipartPart]] = None
    extract: Dict[str, str] = field(default_factory=dict)
    depends_on: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Scenario":
        if not isinstance(data, dict):
            raise ConfigError(f"Scenario must be a mapping, got: {data!r}")
        for key in ("name", "method", "url"):
            if key not in data:
                raise ConfigError(f"Scenario is missing required field '{key}'")
        return cls(
            name=str(data["name"]),
            method=str(data["method"]).upper(),
            url=str(data["url"]),
            headers=_str_mapping(data.get("headers"), "headers"),
            body=_body(data.get("body")),
            multipart=_parse_parts(data.get("multipart")),
            extract=_str_mapping(data.get("extract"), "extract"),
            depends_on=_optional_str(data.get("depends_on")),
        )


@dataclass
class OutputConfig:
    json: str = "results/output.json"
    html: str = "results/output.html"


@dataclass
class RunConfig:
    """Validated configuration consumed by the executor."""
    target: Optional[str] = None
    method: str = DEFAULT_METHOD
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[str] = None
    multipart: Optional[List[MultipartPart]] = None
    scenarios: List[Scenario] = field(default_factory=list)
    concurrency: int = DEFAULT_CONCURRENCY
    duration: str = DEFAULT_DURATION
    mode: ExecutionMode = ExecutionMode.ASYNC
    output: OutputConfig = field(default_factory=OutputConfig)

    @property
    def is_simple_mode(self) -> bool:
        return not self.scenarios

    @property
    def duration_secs(self) -> int:
        return parse_duration(self.duration)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunConfig":
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError("Configuration root must be a mapping")

        mode = data.get("mode", ExecutionMode.ASYNC.value)
        try:
            mode = ExecutionMode(str(mode).lower())
        except ValueError:
            raise ConfigError("Mode must be either 'async' or 'sync'") from None

        concurrency = data.get("concurrency", DEFAULT_CONCURRENCY)
        try:
            concurrency = int(concurrency)
        except (TypeError, ValueError):
            raise ConfigError(f"Concurrency must be an integer, got: {concurrency!r}") from None

        output = data.get("output") or {}
        if not isinstance(output, dict):
            raise ConfigError("'output' must be a mapping")

        scenarios = data.get("scenarios") or []
        if not isinstance(scenarios, list):
            raise ConfigError("'scenarios' must be a list")

        config = cls(
            target=_optional_str(data.get("target")),
            method=str(data.get("method") or DEFAULT_METHOD).upper(),
            headers=_str_mapping(data.get("headers"), "headers"),
            body=_body(data.get("body")),
            multipart=_parse_parts(data.get("multipart")),
            scenarios=[Scenario.from_dict(s) for s in scenarios],
            concurrency=concurrency,
            duration=str(data.get("duration", DEFAULT_DURATION)),
            mode=mode,
            output=OutputConfig(**{k: str(v) for k, v in output.items() if k in ("json", "html")}),
        )
        config.validate()
        return config

    def validate(self):
        """Raise ConfigError on the first problem found."""
        if not self.scenarios and not self.target:
            raise ConfigError("Either 'target' or 'scenarios' must be specified")

        if self.concurrency < 1:
            raise ConfigError("Concurrency must be greater than 0")

        # Surfaces a bad duration string at load time
        parse_duration(self.duration)

        for part in self.multipart or []:
            part.validate()

        seen = set()
        for scenario in self.scenarios:
            if scenario.name in seen:
                raise ConfigError(f"Duplicate scenario name: '{scenario.name}'")
            seen.add(scenario.name)
            for part in scenario.multipart or []:
                part.validate(scenario.name)

        names = {s.name for s in self.scenarios}
        for scenario in self.scenarios:
            if scenario.depends_on and scenario.depends_on not in names:
                logger.warning(
                    "Scenario '%s' depends on unknown step '%s' and will always be skipped",
                    scenario.name, scenario.depends_on,
                )


def parse_duration(value: str) -> int:
    """
    Parse a duration string to whole seconds.
    Accepts "30s", "5m", "2h" or a bare number of seconds.
    """
    text = str(value).strip()
    multipliers = {"s": 1, "m": 60, "h": 3600}
    multiplier = 1
    if text and text[-1] in multipliers:
        multiplier = multipliers[text[-1]]
        text = text[:-1]

    try:
        amount = int(text)
    except ValueError:
        raise ConfigError(f"Invalid duration: '{value}'") from None
    if amount < 0:
        raise ConfigError(f"Duration must not be negative: '{value}'")
    return amount * multiplier


def load_config(path: str, overrides: Optional[Dict[str, Any]] = None) -> RunConfig:
    """
    Read a YAML configuration file, apply overrides and validate.
    Overrides with a None value are ignored.
    """
    config_path = Path(path)
    try:
        content = config_path.read_text()
    except OSError as e:
        raise ConfigError(f"Cannot read configuration file '{path}': {e}") from e

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in '{path}': {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError("Configuration root must be a mapping")

    for key, value in (overrides or {}).items():
        if value is None:
            continue
        if key in ("json", "html"):
            data.setdefault("output", {})
            data["output"] = dict(data["output"] or {}, **{key: value})
        else:
            data[key] = value

    return RunConfig.from_dict(data)


def _optional_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _str_mapping(value: Any, what: str) -> Dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{what}' must be a mapping")
    return {str(k): str(v) for k, v in value.items()}


def _parse_parts(value: Any) -> Optional[List[MultipartPart]]:
    if value is None:
        return None
    if not isinstance(value, list):
        raise ConfigError("'multipart' must be a list")
    return [MultipartPart.from_dict(p) for p in value]


def _body(value: Any) -> Optional[str]:
    # YAML mappings and lists are sent as JSON text
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return _optional_str(value)
