"""
SQL Transport Protocol.

Defines the abstract interface the query engine uses to talk to a database.
The engine only ever builds SQL text from schema-validated identifiers and
values passed through prepare()/escape(); the transport owns execution.

Placeholders follow the printf convention used throughout the engine:
%d (integer), %f (decimal), %s (quoted string), %% (literal percent).
"""

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class SQLTransport(Protocol):
    """
    Abstract SQL execution for the query engine.

    Every method that touches the database raises TransportError on failure.
    Rows are returned as plain dicts keyed by column name.
    """

    def prepare(self, query: str, *args: Any) -> str:
        """
        Substitute placeholders with safely quoted literals.

        A single list/tuple argument is treated as the full argument list.
        """
        ...

    def escape(self, value: Any) -> str:
        """Escape a value for use inside a quoted string literal."""
        ...

    def esc_like(self, text: str) -> str:
        """Escape LIKE wildcards (and the escape character) in text."""
        ...

    def query(self, sql: str) -> int:
        """Execute a statement and return the number of affected rows."""
        ...

    def insert(self, table: str, data: dict[str, Any]) -> int:
        """Insert a row and return its new primary key."""
        ...

    def update(self, table: str, data: dict[str, Any], where: dict[str, Any]) -> int:
        """Update matching rows and return the number affected."""
        ...

    def delete(self, table: str, where: dict[str, Any]) -> int:
        """Delete matching rows and return the number affected."""
        ...

    def get_row(self, sql: str) -> dict[str, Any] | None:
        ...

    def get_col(self, sql: str) -> list[Any]:
        ...

    def get_results(self, sql: str) -> list[dict[str, Any]]:
        ...

    def get_var(self, sql: str) -> Any:
        ...
