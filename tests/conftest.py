import pytest

from vmetrics_deploy.errors import TemplateLoadError


class FakeAssets:
    """In-memory asset reader keyed by virtual path."""

    def __init__(self, files: dict[str, str | bytes]) -> None:
        self.files = files
        self.reads: list[str] = []

    def __len__(self) -> int:
        return len(self.files)

    def read(self, path: str) -> bytes:
        self.reads.append(path)
        if path not in self.files:
            raise TemplateLoadError(path)
        data = self.files[path]
        return data if isinstance(data, bytes) else data.encode()


@pytest.fixture
def fake_assets() -> type[FakeAssets]:
    return FakeAssets
