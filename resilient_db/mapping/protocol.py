"""Row mapper protocol.

A row mapper turns one row dict from a lazy result sequence into a
caller-defined object. Plain functions and ModelMapper instances both
satisfy it.
"""

from __future__ import annotations

from typing import Any, Protocol, TypeVar

T_co = TypeVar("T_co", covariant=True)


class RowMapper(Protocol[T_co]):
    """Callable mapping a row dict to an object."""

    def __call__(self, row: dict[str, Any]) -> T_co:
        ...
