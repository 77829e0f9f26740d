"""Module Protocol defining the plugin interface for modular architecture."""

from typing import TYPE_CHECKING, Protocol


if TYPE_CHECKING:
    from fastapi import APIRouter


class Module(Protocol):
    """Protocol defining the interface for feature modules. Self-contained plugins with schemas and routes."""

    @property
    def name(self) -> str:
        """Module name (unique identifier)."""
        ...

    @property
    def description(self) -> str:
        """Module description (human-readable)."""
        ...

    def get_table_schemas(self) -> dict[str, str]:
        """Return table schemas for this module.

        Returns:
            Dictionary mapping table names to CREATE TABLE SQL statements
        """
        ...

    def get_indexes(self) -> list[str]:
        """Return indexes for this module's tables.

        Returns:
            List of CREATE INDEX SQL statements
        """
        ...

    def get_router(self) -> "APIRouter | None":
        """Return the HTTP router exposing this module's operations, if any."""
        ...
