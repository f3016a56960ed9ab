"""Composable metadata filters for vector store queries."""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from tenancy_core.storage.models import Chunk

# Chunk attributes addressable by name; anything else is read from metadata.custom
CHUNK_FIELDS = ("document_id", "index", "start_offset", "end_offset", "source")

_MISSING = object()


class FilterOperator(str, Enum):
    """Filter operators understood by every VectorStore."""

    EQUALS = "eq"
    NOT_EQUALS = "ne"
    GREATER_THAN = "gt"
    LESS_THAN = "lt"
    GREATER_THAN_OR_EQUAL = "gte"
    LESS_THAN_OR_EQUAL = "lte"
    IN = "in"
    NOT_IN = "not_in"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"
    AND = "and"
    OR = "or"
    NOT = "not"


@dataclass(frozen=True)
class MetadataFilter:
    """
    A predicate over chunk metadata.

    Build filters with the classmethod constructors and combine them with
    ``and_``, ``or_`` and ``not_``:

        MetadataFilter.and_(
            MetadataFilter.equals("lang", "en"),
            MetadataFilter.not_(MetadataFilter.exists("draft")),
        )

    Field names ``document_id``, ``index``, ``start_offset``, ``end_offset``
    and ``source`` address the chunk's own metadata; any other name is looked
    up in ``metadata.custom``.
    """

    op: FilterOperator
    field: str | None = None
    value: Any = None
    filters: tuple["MetadataFilter", ...] = ()

    # Comparison constructors

    @classmethod
    def equals(cls, field_name: str, value: Any) -> "MetadataFilter":
        return cls(FilterOperator.EQUALS, field_name, value)

    @classmethod
    def not_equals(cls, field_name: str, value: Any) -> "MetadataFilter":
        return cls(FilterOperator.NOT_EQUALS, field_name, value)

    @classmethod
    def greater_than(cls, field_name: str, value: float) -> "MetadataFilter":
        return cls(FilterOperator.GREATER_THAN, field_name, value)

    @classmethod
    def less_than(cls, field_name: str, value: float) -> "MetadataFilter":
        return cls(FilterOperator.LESS_THAN, field_name, value)

    @classmethod
    def greater_than_or_equal(cls, field_name: str, value: float) -> "MetadataFilter":
        return cls(FilterOperator.GREATER_THAN_OR_EQUAL, field_name, value)

    @classmethod
    def less_than_or_equal(cls, field_name: str, value: float) -> "MetadataFilter":
        return cls(FilterOperator.LESS_THAN_OR_EQUAL, field_name, value)

    @classmethod
    def in_(cls, field_name: str, values: Iterable[Any]) -> "MetadataFilter":
        return cls(FilterOperator.IN, field_name, tuple(values))

    @classmethod
    def not_in(cls, field_name: str, values: Iterable[Any]) -> "MetadataFilter":
        return cls(FilterOperator.NOT_IN, field_name, tuple(values))

    @classmethod
    def contains(cls, field_name: str, substring: str) -> "MetadataFilter":
        return cls(FilterOperator.CONTAINS, field_name, substring)

    @classmethod
    def starts_with(cls, field_name: str, prefix: str) -> "MetadataFilter":
        return cls(FilterOperator.STARTS_WITH, field_name, prefix)

    @classmethod
    def ends_with(cls, field_name: str, suffix: str) -> "MetadataFilter":
        return cls(FilterOperator.ENDS_WITH, field_name, suffix)

    @classmethod
    def exists(cls, field_name: str) -> "MetadataFilter":
        return cls(FilterOperator.EXISTS, field_name)

    @classmethod
    def not_exists(cls, field_name: str) -> "MetadataFilter":
        return cls(FilterOperator.NOT_EXISTS, field_name)

    # Logical constructors

    @classmethod
    def and_(cls, *filters: "MetadataFilter") -> "MetadataFilter":
        return cls(FilterOperator.AND, filters=tuple(filters))

    @classmethod
    def or_(cls, *filters: "MetadataFilter") -> "MetadataFilter":
        return cls(FilterOperator.OR, filters=tuple(filters))

    @classmethod
    def not_(cls, inner: "MetadataFilter") -> "MetadataFilter":
        return cls(FilterOperator.NOT, filters=(inner,))

    # Evaluation

    def matches(self, chunk: Chunk) -> bool:
        """Evaluate the filter against a chunk."""
        values = {name: getattr(chunk.metadata, name) for name in CHUNK_FIELDS}
        values = {name: value for name, value in values.items() if value is not None}
        return self.matches_metadata({**chunk.metadata.custom, **values})

    def matches_metadata(self, metadata: Mapping[str, Any]) -> bool:
        """Evaluate the filter against a flat metadata mapping."""
        op = self.op
        if op is FilterOperator.AND:
            return all(f.matches_metadata(metadata) for f in self.filters)
        if op is FilterOperator.OR:
            return any(f.matches_metadata(metadata) for f in self.filters)
        if op is FilterOperator.NOT:
            return not self.filters[0].matches_metadata(metadata)

        value = metadata.get(self.field, _MISSING)
        present = value is not _MISSING and value is not None

        if op is FilterOperator.EXISTS:
            return present
        if op is FilterOperator.NOT_EXISTS:
            return not present
        if op is FilterOperator.NOT_EQUALS:
            return value is _MISSING or value != self.value
        if op is FilterOperator.NOT_IN:
            return value is _MISSING or value not in self.value
        if value is _MISSING:
            return False
        if op is FilterOperator.EQUALS:
            return value == self.value
        if op is FilterOperator.IN:
            return value in self.value

        if op in (FilterOperator.CONTAINS, FilterOperator.STARTS_WITH, FilterOperator.ENDS_WITH):
            if not isinstance(value, str):
                return False
            if op is FilterOperator.CONTAINS:
                return self.value in value
            if op is FilterOperator.STARTS_WITH:
                return value.startswith(self.value)
            return value.endswith(self.value)

        # Numeric comparisons; booleans are not numbers here
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False
        if op is FilterOperator.GREATER_THAN:
            return value > self.value
        if op is FilterOperator.LESS_THAN:
            return value < self.value
        if op is FilterOperator.GREATER_THAN_OR_EQUAL:
            return value >= self.value
        return value <= self.value
