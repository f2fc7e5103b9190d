"""Generate the VictoriaMetrics scrape configuration and launcher script."""

from .errors import TemplateError, TemplateExecError, TemplateLoadError, TemplateParseError
from .template.config import ConfigBuilder, ConfigData
from .template.scripts import ScriptBuilder, ScriptData
from .version import __version__

__all__ = [
    "ConfigBuilder",
    "ConfigData",
    "ScriptBuilder",
    "ScriptData",
    "TemplateError",
    "TemplateExecError",
    "TemplateLoadError",
    "TemplateParseError",
    "__version__",
]
