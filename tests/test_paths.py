"""Tests for asset path helpers and defaults."""

from vmetrics_deploy.embed import EmbeddedAssets
from vmetrics_deploy.paths import (
    DEFAULT_PORT,
    DEFAULT_RETENTION,
    OUTPUT_MODE,
    get_config_template_path,
    get_script_template_path,
)


def test_get_config_template_path() -> None:
    assert get_config_template_path() == "templates/config/VictoriaMetrics.yml.tpl"


def test_get_script_template_path() -> None:
    assert get_script_template_path() == "templates/scripts/run_prometheus.sh.tpl"


def test_defaults() -> None:
    assert DEFAULT_PORT == 9090
    assert DEFAULT_RETENTION == "30d"
    assert OUTPUT_MODE == 0o755


def test_template_paths_are_bundled() -> None:
    assets = EmbeddedAssets()

    assert assets.read(get_config_template_path())
    assert assets.read(get_script_template_path())
