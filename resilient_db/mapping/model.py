"""Row-to-model mapper used with lazy result sequences.

Supports dataclasses, Pydantic models, and plain classes. Column names
are matched to field names case-insensitively because PostgreSQL folds
unquoted names to lower case.
"""

from __future__ import annotations

import dataclasses
import inspect
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from resilient_db.core.exceptions import ColumnMismatchError

T = TypeVar("T")


def _field_names(target_class: type) -> list[str]:
    if issubclass(target_class, BaseModel):
        return list(target_class.model_fields)
    if dataclasses.is_dataclass(target_class):
        return [field.name for field in dataclasses.fields(target_class) if field.init]
    try:
        parameters = inspect.signature(target_class).parameters.values()
    except (TypeError, ValueError):
        return []
    return [
        parameter.name
        for parameter in parameters
        if parameter.kind in (parameter.POSITIONAL_OR_KEYWORD, parameter.KEYWORD_ONLY)
    ]


class ModelMapper(Generic[T]):
    """Map row dicts to instances of *target_class*.

    Detection order:
    1. Pydantic BaseModel -> model_validate(row)
    2. dataclass / plain class -> target_class(**row)

    Instances are callable, so a mapper can be passed directly as the
    ``row_mapper`` of ``get_query_results_lazy``.

    Args:
        target_class: The class to construct from row data.
        aliases: Optional column-name to field-name mapping.
    """

    def __init__(
        self,
        target_class: type[T],
        aliases: dict[str, str] | None = None,
    ) -> None:
        self._target_class = target_class
        self._aliases = {key.lower(): value for key, value in (aliases or {}).items()}
        self._is_pydantic = issubclass(target_class, BaseModel)
        self._fields = {name.lower(): name for name in _field_names(target_class)}

    def _rename(self, row: dict[str, Any]) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for key, value in row.items():
            lowered = key.lower()
            if lowered in self._aliases:
                result[self._aliases[lowered]] = value
            elif lowered in self._fields:
                result[self._fields[lowered]] = value
            elif not self._fields:
                result[key] = value
        return result

    def map_one(self, row: dict[str, Any]) -> T:
        """Map a single row to a target_class instance."""
        values = self._rename(row)

        if self._is_pydantic:
            try:
                return self._target_class.model_validate(values)  # type: ignore[attr-defined, no-any-return]
            except ValidationError as e:
                raise ColumnMismatchError(self._target_class.__name__, [str(e)]) from e

        try:
            return self._target_class(**values)
        except TypeError as e:
            raise ColumnMismatchError(self._target_class.__name__, [str(e)]) from e

    def map_many(self, rows: list[dict[str, Any]]) -> list[T]:
        """Map all rows via map_one."""
        return [self.map_one(row) for row in rows]

    def __call__(self, row: dict[str, Any]) -> T:
        return self.map_one(row)
