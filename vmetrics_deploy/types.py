"""Value types shared by the template builders."""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Address:
    host: str
    port: int

    def __post_init__(self) -> None:
        if isinstance(self.port, bool) or not isinstance(self.port, int):
            raise TypeError(f"Port must be an integer, got {type(self.port).__name__}")
        if self.port < 0:
            raise ValueError(f"Port must not be negative: {self.port}")

    def __repr__(self) -> str:
        return f"{self.host}:{self.port}"

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"
