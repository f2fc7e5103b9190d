"""Virtual asset paths and fixed defaults for the generated artifacts."""

import posixpath

TEMPLATES_ROOT = "templates"

DEFAULT_PORT = 9090
DEFAULT_RETENTION = "30d"
OUTPUT_MODE = 0o755


def get_config_template_path() -> str:
    return posixpath.join(TEMPLATES_ROOT, "config", "VictoriaMetrics.yml.tpl")


def get_script_template_path() -> str:
    # Shared launcher template; the name is kept as shipped.
    return posixpath.join(TEMPLATES_ROOT, "scripts", "run_prometheus.sh.tpl")
