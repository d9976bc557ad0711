"""Tag-query construction and object lookup.

Stored objects carry no external index. Every "does a backup exist for this
path" question is answered by building a :class:`TagQuery` from the optional
search fields and letting the backend resolve it. Values are sanitized with
:func:`sanitize_tag_value` both when tags are written and when queries are
built; a mismatch between the two silently turns lookups into misses.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Mapping, Optional

if TYPE_CHECKING:
    from folderback.store import BackendStore

LOGGER = logging.getLogger(__name__)

CLAUSE_SEPARATOR = " && "

_REPLACEMENTS = (
    ("'", ""),
    ("/", "-_-"),
    ("\\", "_-_"),
)


def sanitize_tag_value(value: str) -> str:
    """Return ``value`` made safe for embedding in a tag-query string.

    Single quotes are dropped; forward and back slashes become sentinel tokens.
    """
    for old, new in _REPLACEMENTS:
        value = value.replace(old, new)
    return value


@dataclass(frozen=True, slots=True)
class TagQuery:
    """Conjunction of sanitized tag-equality clauses."""

    clauses: tuple[tuple[str, str], ...]

    @property
    def expression(self) -> str:
        """Render the query as ``field = 'value'`` clauses joined by ``&&``."""
        return CLAUSE_SEPARATOR.join(f"{field} = '{value}'" for field, value in self.clauses)

    def matches(self, tags: Mapping[str, str]) -> bool:
        """Return whether every clause equals the corresponding stored tag."""
        return all(tags.get(field) == value for field, value in self.clauses)

    def __str__(self) -> str:
        return self.expression


@dataclass(frozen=True, slots=True)
class ObjectSearch:
    """Optional search fields; omitted fields do not constrain the result."""

    file_extension: Optional[str] = None
    relative_path: Optional[str] = None
    file_name: Optional[str] = None

    def to_query(self) -> Optional[TagQuery]:
        """Build the tag query, or ``None`` when every field is omitted."""
        clauses: list[tuple[str, str]] = []
        if self.file_extension is not None:
            clauses.append(("file_extension", sanitize_tag_value(self.file_extension.lower())))
        if self.relative_path is not None:
            clauses.append(("relative_path", sanitize_tag_value(self.relative_path)))
        if self.file_name is not None:
            clauses.append(("file_name", sanitize_tag_value(self.file_name)))
        if not clauses:
            return None
        return TagQuery(tuple(clauses))


class ObjectLocator:
    """Resolve :class:`ObjectSearch` values against a backend store."""

    def __init__(self, store: "BackendStore") -> None:
        self._store = store

    @property
    def store(self) -> "BackendStore":
        """Return the backend store lookups run against."""
        return self._store

    def find_all(self, container: str, search: ObjectSearch) -> list[str]:
        """Return every matching object id in backend order.

        Args:
            container: Container to search.
            search: Search fields; an empty search lists the whole container.

        Returns:
            list[str]: Matching object ids.
        """
        query = search.to_query()
        LOGGER.debug("Searching %s with query: %s", container, query or "<all objects>")
        return list(self._store.list_objects(container, query))

    def find_one(self, container: str, search: ObjectSearch) -> Optional[str]:
        """Return the first matching object id, or ``None`` when nothing matches."""
        matches = self.find_all(container, search)
        return matches[0] if matches else None


__all__ = ["ObjectLocator", "ObjectSearch", "TagQuery", "sanitize_tag_value"]
