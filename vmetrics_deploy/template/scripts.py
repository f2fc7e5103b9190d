"""Launcher script for the VictoriaMetrics process."""

import re
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from vmetrics_deploy.embed import AssetReader, default_assets
from vmetrics_deploy.paths import DEFAULT_PORT, DEFAULT_RETENTION, get_script_template_path
from vmetrics_deploy.sink import write_file
from vmetrics_deploy.template.engine import render_template
from vmetrics_deploy.utils.log import get_logger

logger = get_logger(__name__)

TEMPLATE_NAME = "VictoriaMetrics"
RETENTION_RE = re.compile(r"[1-9][0-9]*d")


class ScriptData(BaseModel):
    """Values exposed to the launcher script template."""

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    ip: str = Field(alias="IP")
    port: int = Field(default=DEFAULT_PORT, ge=0, strict=True, alias="Port")
    deploy_dir: str = Field(alias="DeployDir")
    data_dir: str = Field(alias="DataDir")
    log_dir: str = Field(alias="LogDir")
    numa_node: str = Field(default="", alias="NumaNode")
    retention: str = Field(default=DEFAULT_RETENTION, alias="Retention")
    tpl_file: str | None = Field(default=None, exclude=True)

    @field_validator("retention", mode="before")
    @classmethod
    def normalize_retention(cls, value: object) -> str:
        """Keep a ``<days>d`` retention, fall back to the default for anything else."""
        if isinstance(value, str) and RETENTION_RE.fullmatch(value):
            return value
        return DEFAULT_RETENTION


class ScriptBuilder:
    def __init__(
        self,
        ip: str,
        deploy_dir: str,
        data_dir: str,
        log_dir: str,
        *,
        assets: AssetReader | None = None,
    ) -> None:
        self.data = ScriptData(ip=ip, deploy_dir=deploy_dir, data_dir=data_dir, log_dir=log_dir)
        self._assets = default_assets() if assets is None else assets

    def __repr__(self) -> str:
        return f"<ScriptBuilder ip={self.data.ip} port={self.data.port}>"

    def with_port(self, port: int) -> "ScriptBuilder":
        self.data.port = port
        return self

    def with_numa_node(self, numa: str) -> "ScriptBuilder":
        self.data.numa_node = numa
        return self

    def with_retention(self, retention: str) -> "ScriptBuilder":
        self.data.retention = retention
        if self.data.retention != retention:
            logger.debug(f"Retention {retention!r} replaced by {self.data.retention}")
        return self

    def with_tpl_file(self, fname: str) -> "ScriptBuilder":
        self.data.tpl_file = fname
        return self

    def render(self) -> bytes:
        """Render the launcher script.

        The template set with ``with_tpl_file`` is read through the same asset
        reader as the bundled one and takes precedence over it.
        """
        template_path = self.data.tpl_file or get_script_template_path()
        tpl = self._assets.read(template_path)
        logger.debug(f"Rendering {template_path} for {self.data.ip}:{self.data.port}")
        return self.render_with_template(tpl.decode(errors="surrogateescape"))

    def render_with_template(self, tpl: str) -> bytes:
        return render_template(TEMPLATE_NAME, tpl, self.data.model_dump(by_alias=True))

    def render_to(self, path: Path | str) -> None:
        write_file(path, self.render())
        logger.debug(f"Wrote run script to: {path}")
