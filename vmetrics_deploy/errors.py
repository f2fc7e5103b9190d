"""Errors raised while loading, parsing and executing templates."""


class TemplateError(RuntimeError):
    """Base class for all template failures."""


class TemplateLoadError(TemplateError):
    """The requested template asset does not exist."""

    def __init__(self, path: str, reason: str = "not found") -> None:
        super().__init__(f"Template asset '{path}' {reason}")
        self.path = path


class TemplateParseError(TemplateError):
    def __init__(self, name: str, line: int, message: str) -> None:
        super().__init__(f"template: {name}:{line}: {message}")
        self.name = name
        self.line = line


class TemplateExecError(TemplateError):
    def __init__(self, name: str, line: int, message: str) -> None:
        super().__init__(f"template: {name}:{line}: executing: {message}")
        self.name = name
        self.line = line
