from pathlib import Path

import pytest

from deepnote_lifecycle.config import deep_merge, parse_env_value, parse_env_vars
from deepnote_lifecycle.config._loader import read_toml_file, set_nested_key
from deepnote_lifecycle.exceptions import ConfigLoadError


class TestDeepMerge:
    def test_merges_nested_sections(self) -> None:
        base = {"server": {"startup_timeout": 120, "poll_interval": 0.5}}
        override = {"server": {"startup_timeout": 30}}

        result = deep_merge(base, override)

        assert result == {"server": {"startup_timeout": 30, "poll_interval": 0.5}}

    def test_lists_are_replaced(self) -> None:
        result = deep_merge({"toolkit": {"extras": ["server"]}}, {"toolkit": {"extras": []}})

        assert result == {"toolkit": {"extras": []}}

    def test_inputs_are_not_modified(self) -> None:
        base = {"ports": {"jupyter_base": 8888}}
        override = {"ports": {"jupyter_base": 9000}}

        _ = deep_merge(base, override)

        assert base == {"ports": {"jupyter_base": 8888}}
        assert override == {"ports": {"jupyter_base": 9000}}


class TestParseEnvValue:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("true", True),
            ("FALSE", False),
            ("42", 42),
            ("0.25", 0.25),
            ('["a", "b"]', ["a", "b"]),
            ('{"a": 1}', {"a": 1}),
            ("localhost", "localhost"),
            ("[not json", "[not json"),
        ],
    )
    def test_infers_types(self, raw: str, expected: object) -> None:
        assert parse_env_value(raw) == expected


class TestParseEnvVars:
    def test_nests_double_underscore_keys(self) -> None:
        environ = {
            "DEEPNOTE_LIFECYCLE_SERVER__STARTUP_TIMEOUT": "30",
            "DEEPNOTE_LIFECYCLE_LOGGING__LEVEL": "debug",
            "UNRELATED": "x",
        }

        result = parse_env_vars(environ=environ)

        assert result == {"server": {"startup_timeout": 30}, "logging": {"level": "debug"}}

    def test_ignores_bare_prefix(self) -> None:
        assert parse_env_vars(environ={"DEEPNOTE_LIFECYCLE_": "x"}) == {}


class TestSetNestedKey:
    def test_replaces_scalar_along_path(self) -> None:
        d: dict[str, object] = {"server": 1}

        set_nested_key(d, "server.poll_interval", 0.1)

        assert d == {"server": {"poll_interval": 0.1}}


class TestReadTomlFile:
    def test_reads_file(self, tmp_path: Path) -> None:
        path = tmp_path / "config.toml"
        _ = path.write_text('[ports]\njupyter_base = 9000\n')

        assert read_toml_file(path) == {"ports": {"jupyter_base": 9000}}

    def test_invalid_toml_reports_location(self, tmp_path: Path) -> None:
        path = tmp_path / "config.toml"
        _ = path.write_text("[ports\n")

        with pytest.raises(ConfigLoadError) as exc_info:
            _ = read_toml_file(path)

        assert exc_info.value.path == path
        assert "Failed to parse TOML file" in str(exc_info.value)

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigLoadError, match="Failed to read config file"):
            _ = read_toml_file(tmp_path / "missing.toml")
