"""Read-only access to the template assets bundled with the package.

Assets are addressed by forward-slash virtual paths such as
``templates/config/VictoriaMetrics.yml.tpl``. A leading ``/`` is accepted and
ignored, so ``/templates/...`` refers to the same asset.
"""

from functools import cache
from pathlib import Path, PurePosixPath
from typing import Protocol

from vmetrics_deploy.errors import TemplateLoadError
from vmetrics_deploy.utils.log import get_logger

logger = get_logger(__name__)

PACKAGE_DIR = Path(__file__).parent


class AssetReader(Protocol):
    def read(self, path: str) -> bytes: ...


class EmbeddedAssets:
    def __init__(self, root: Path = PACKAGE_DIR) -> None:
        self.root = root.resolve()

    def __repr__(self) -> str:
        return f"<EmbeddedAssets root={self.root}>"

    def _resolve(self, path: str) -> Path:
        parts = PurePosixPath(path.lstrip("/")).parts
        if not parts or ".." in parts:
            raise TemplateLoadError(path, "is not a valid asset path")
        return self.root.joinpath(*parts)

    def read(self, path: str) -> bytes:
        asset = self._resolve(path)
        logger.debug(f"Reading asset {path} from {asset}")
        if not asset.is_file():
            raise TemplateLoadError(path)
        return asset.read_bytes()


@cache
def default_assets() -> EmbeddedAssets:
    return EmbeddedAssets()
