"""Codec protocol shared by all backends."""

from typing import Protocol, TypeVar

C = TypeVar("C")
N = TypeVar("N")


class Codec(Protocol[C, N]):
    """Bidirectional mapping between a canonical value and a native one.

    ``from_native`` must be the left inverse of ``to_native`` for every value
    the backend persists: ``from_native(to_native(x)) == x``.
    """

    def to_native(self, value: C) -> N: ...

    def from_native(self, value: N) -> C: ...
