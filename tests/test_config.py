import json

import pytest

from flux_config import ExecutionMode, MultipartPart, RunConfig, load_config, parse_duration
from flux_errors import ConfigError


class TestParseDuration:
    @pytest.mark.parametrize("text, expected", [
        ("30s", 30),
        ("5m", 300),
        ("2h", 7200),
        ("45", 45),
        (" 10s ", 10),
    ])
    def test_valid(self, text, expected):
        assert parse_duration(text) == expected

    @pytest.mark.parametrize("text", ["", "abc", "10x", "1.5m", "s"])
    def test_invalid(self, text):
        with pytest.raises(ConfigError):
            parse_duration(text)


class TestRunConfig:
    def test_defaults(self):
        config = RunConfig.from_dict({"target": "http://localhost:8000"})
        assert config.method == "GET"
        assert config.concurrency == 10
        assert config.duration_secs == 30
        assert config.mode == ExecutionMode.ASYNC
        assert config.is_simple_mode
        assert config.output.json == "results/output.json"

    def test_requires_target_or_scenarios(self):
        with pytest.raises(ConfigError, match="target"):
            RunConfig.from_dict({"concurrency": 5})

    def test_scenarios_without_target(self):
        config = RunConfig.from_dict({
            "scenarios": [{"name": "health", "method": "get", "url": "http://api.test/health"}],
        })
        assert not config.is_simple_mode
        assert config.scenarios[0].method == "GET"

    def test_invalid_mode(self):
        with pytest.raises(ConfigError, match="Mode"):
            RunConfig.from_dict({"target": "http://x", "mode": "parallel"})

    def test_zero_concurrency(self):
        with pytest.raises(ConfigError, match="Concurrency"):
            RunConfig.from_dict({"target": "http://x", "concurrency": 0})

    def test_bad_duration(self):
        with pytest.raises(ConfigError, match="duration"):
            RunConfig.from_dict({"target": "http://x", "duration": "forever"})

    def test_duplicate_scenario_names(self):
        with pytest.raises(ConfigError, match="Duplicate"):
            RunConfig.from_dict({"scenarios": [
                {"name": "a", "method": "GET", "url": "http://x/1"},
                {"name": "a", "method": "GET", "url": "http://x/2"},
            ]})

    def test_scenario_missing_field(self):
        with pytest.raises(ConfigError, match="url"):
            RunConfig.from_dict({"scenarios": [{"name": "a", "method": "GET"}]})

    def test_file_part_requires_path(self):
        with pytest.raises(ConfigError, match="path"):
            RunConfig.from_dict({
                "target": "http://x",
                "multipart": [{"type": "file", "name": "doc"}],
            })

    def test_field_part_requires_value_in_scenario(self):
        with pytest.raises(ConfigError, match="scenario 'upload'"):
            RunConfig.from_dict({"scenarios": [{
                "name": "upload",
                "method": "POST",
                "url": "http://x/upload",
                "multipart": [{"type": "field", "name": "note"}],
            }]})

    def test_unknown_part_type_accepted_at_load(self):
        config = RunConfig.from_dict({
            "target": "http://x",
            "multipart": [{"type": "blob", "name": "data"}],
        })
        assert config.multipart == [MultipartPart(part_type="blob", name="data")]

    def test_mapping_body_sent_as_json(self):
        config = RunConfig.from_dict({"target": "http://x", "body": {"user": "john"}})
        assert json.loads(config.body) == {"user": "john"}

    def test_unknown_dependency_is_warned_not_rejected(self, caplog):
        config = RunConfig.from_dict({"scenarios": [
            {"name": "b", "method": "GET", "url": "http://x/b", "depends_on": "ghost"},
        ]})
        assert config.scenarios[0].depends_on == "ghost"
        assert "ghost" in caplog.text


class TestLoadConfig:
    def test_load_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "target: http://localhost:8000\n"
            "concurrency: 3\n"
            "duration: 2m\n"
            "mode: sync\n"
            "scenarios:\n"
            "  - name: login\n"
            "    method: POST\n"
            "    url: /login\n"
            "    extract:\n"
            "      token: $.token\n"
            "  - name: me\n"
            "    method: GET\n"
            "    url: /me\n"
            "    headers:\n"
            "      Authorization: Bearer {{ token }}\n"
            "    depends_on: login\n"
            "output:\n"
            "  json: out/r.json\n"
            "  html: out/r.html\n"
        )
        config = load_config(str(path))
        assert config.concurrency == 3
        assert config.duration_secs == 120
        assert config.mode == ExecutionMode.SYNC
        assert [s.name for s in config.scenarios] == ["login", "me"]
        assert config.scenarios[0].extract == {"token": "$.token"}
        assert config.scenarios[1].headers == {"Authorization": "Bearer {{ token }}"}
        assert config.output.html == "out/r.html"

    def test_overrides(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("target: http://localhost:8000\nconcurrency: 3\n")
        config = load_config(str(path), {
            "concurrency": 7,
            "duration": "5s",
            "mode": None,
            "json": "custom.json",
        })
        assert config.concurrency == 7
        assert config.duration_secs == 5
        assert config.mode == ExecutionMode.ASYNC
        assert config.output.json == "custom.json"
        assert config.output.html == "results/output.html"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="Cannot read"):
            load_config(str(tmp_path / "absent.yaml"))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("target: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config(str(path))
