"""Tests for shared value types."""

import pytest

from vmetrics_deploy.types import Address


def test_address_formatting() -> None:
    assert str(Address("10.0.0.1", 2379)) == "10.0.0.1:2379"
    assert repr(Address("pd-0", 0)) == "pd-0:0"


def test_address_keeps_host_verbatim() -> None:
    assert str(Address(" odd host ", 1)) == " odd host :1"
    assert str(Address("", 9100)) == ":9100"


def test_address_rejects_negative_port() -> None:
    with pytest.raises(ValueError, match="must not be negative: -1"):
        Address("h", -1)


@pytest.mark.parametrize("port", ["9090", 1.5, True, None])
def test_address_rejects_non_integer_port(port) -> None:
    with pytest.raises(TypeError, match="Port must be an integer"):
        Address("h", port)


def test_address_is_hashable() -> None:
    assert Address("h", 1) == Address("h", 1)
    assert len({Address("h", 1), Address("h", 1), Address("h", 2)}) == 2
