"""
Relational store used by the linkage engine.

Wraps a SQLAlchemy session with the primitives the engine needs:
- query / execute for arbitrary statements
- get_maxid_num, a per-table id reservation backed by the ``ids`` table
- escape_field, column-aware literal quoting for generated SQL
- SqlBuffer with begin/end_multiple_update and execute_overflowed for
  batched updates
- BulkInsert for prepared multi-row inserts
"""
import logging
from contextlib import contextmanager
from typing import Any, Iterable, Iterator, List, Optional, Sequence, Union

from sqlalchemy import Table, func, insert, select, text, update
from sqlalchemy.engine import Result
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.sql import Executable
from sqlalchemy.types import String

from tmplink.config import Settings, settings as default_settings
from tmplink.errors import TransportError

from .models import Base, IdCounter

logger = logging.getLogger(__name__)

Statement = Union[str, Executable]


def _table(name: str) -> Table:
    try:
        return Base.metadata.tables[name]
    except KeyError:
        raise ValueError(f"Unknown table: {name}") from None


def chunks(values: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


class SqlBuffer:
    """Accumulates generated DML statements for batched execution."""

    def __init__(self) -> None:
        self.statements: List[str] = []
        self.size = 0
        self.framed = False

    def append(self, statement: str) -> None:
        self.statements.append(statement)
        self.size += len(statement) + 2

    def clear(self) -> None:
        self.statements.clear()
        self.size = 0

    def __len__(self) -> int:
        return len(self.statements)

    def __str__(self) -> str:
        body = ";\n".join(self.statements)
        if self.framed:
            return f"begin\n{body};\nend;" if body else ""
        return body


class BulkInsert:
    """
    Prepared multi-row insert into one table.

    Usage mirrors a prepared statement: declare the columns once, add
    value tuples, then execute.
    """

    def __init__(self, store: "RelationalStore", table: str, *fields: str):
        self.store = store
        self.table = _table(table)
        self.fields = fields
        self.rows: List[dict] = []

    def add_values(self, *values: Any) -> None:
        if len(values) != len(self.fields):
            raise ValueError(
                f"{self.table.name}: expected {len(self.fields)} values, got {len(values)}"
            )
        self.rows.append(dict(zip(self.fields, values)))

    def execute(self) -> int:
        """
        Insert the queued rows chunk by chunk.

        A chunk leaves the queue only once written, so calling execute again
        after a failure resumes with the first unwritten chunk.
        """
        inserted = 0
        size = self.store.settings.BULK_INSERT_CHUNK
        while self.rows:
            batch = self.rows[:size]
            with self.store.savepoint():
                self.store.execute(insert(self.table), batch)
            del self.rows[:size]
            inserted += len(batch)
        if inserted:
            logger.debug("Inserted %d rows into %s", inserted, self.table.name)
        return inserted


class RelationalStore:
    """
    Database access for a single linkage request.

    All statements run on the given session and therefore inside the
    request's transaction.
    """

    def __init__(self, session: Session, settings: Optional[Settings] = None):
        self.session = session
        self.settings = settings or default_settings

    @property
    def dialect(self) -> str:
        return self.session.get_bind().dialect.name

    @contextmanager
    def savepoint(self) -> Iterator[None]:
        """Run a block under a savepoint so a failure leaves the request transaction usable."""
        # pysqlite does not begin a transaction before SAVEPOINT
        if self.dialect == "sqlite":
            yield
            return
        with self.session.begin_nested():
            yield

    def _run(self, statement: Statement, params: Any = None) -> Result:
        if isinstance(statement, str):
            statement = text(statement)
        try:
            if params is None:
                return self.session.execute(statement)
            return self.session.execute(statement, params)
        except OperationalError as e:
            raise TransportError(f"Database unavailable: {e.orig}") from e
        except DBAPIError as e:
            if e.connection_invalidated:
                raise TransportError(f"Database connection lost: {e.orig}") from e
            raise

    def query(self, statement: Statement, params: Any = None) -> Result:
        """Run a select and return a forward-only row cursor."""
        return self._run(statement, params)

    def execute(self, statement: Statement, params: Any = None) -> int:
        """Run a DML statement and return the affected row count."""
        result = self._run(statement, params)
        return result.rowcount if result.rowcount is not None else 0

    def select_ids(self, statement: Statement, params: Any = None) -> List[int]:
        return sorted({row[0] for row in self.query(statement, params)})

    def get_maxid_num(self, table: str, num: int) -> int:
        """
        Reserve ``num`` consecutive ids for ``table``.

        Returns:
            The first reserved id.
        """
        if num <= 0:
            raise ValueError("id reservation size must be positive")

        tbl = _table(table)
        pk = list(tbl.primary_key.columns)[0]

        current = self.query(
            select(IdCounter.nextid)
            .where(IdCounter.table_name == table, IdCounter.field_name == pk.name)
            .with_for_update()
        ).scalar()

        if current is None:
            current = self.query(select(func.max(pk))).scalar() or 0
            self.execute(
                insert(IdCounter).values(table_name=table, field_name=pk.name, nextid=current + num)
            )
        else:
            self.execute(
                update(IdCounter)
                .where(IdCounter.table_name == table, IdCounter.field_name == pk.name)
                .values(nextid=current + num)
            )

        logger.debug("Reserved %d id(s) for %s starting at %d", num, table, current + 1)
        return current + 1

    def escape_field(self, table: str, column: str, value: Any) -> str:
        """Return ``value`` as an SQL literal suited for ``table.column``."""
        col = _table(table).c[column]
        if value is None:
            return "null"
        if not isinstance(col.type, String) and not isinstance(value, str):
            if isinstance(value, bool):
                return str(int(value))
            return repr(value) if isinstance(value, float) else str(int(value))

        value = str(value)
        length = getattr(col.type, "length", None)
        if length is not None and len(value) > length:
            logger.warning(
                "Value for %s.%s truncated from %d to %d characters", table, column, len(value), length
            )
            value = value[:length]
        if self.dialect == "mysql":
            value = value.replace("\\", "\\\\")
        return "'" + value.replace("'", "''") + "'"

    def new_buffer(self) -> SqlBuffer:
        return SqlBuffer()

    def begin_multiple_update(self, buf: SqlBuffer) -> None:
        buf.framed = self.dialect == "oracle"

    def _flush_buffer(self, buf: SqlBuffer) -> None:
        if not buf:
            return
        if buf.framed:
            self.execute(str(buf))
        else:
            for statement in buf.statements:
                self.execute(statement)
        logger.debug("Executed %d buffered statement(s)", len(buf))
        buf.clear()

    def execute_overflowed(self, buf: SqlBuffer) -> None:
        """Flush the buffer once it grows past the per-statement size limit."""
        if buf.size > self.settings.SQL_BUFFER_LIMIT:
            self._flush_buffer(buf)

    def end_multiple_update(self, buf: SqlBuffer) -> None:
        self._flush_buffer(buf)

    def bulk_insert(self, table: str, *fields: str) -> BulkInsert:
        return BulkInsert(self, table, *fields)

    def update_row(self, buf: SqlBuffer, table: str, key: str, key_value: int, values: dict) -> None:
        """Append ``update table set ... where key=value`` built from escaped literals."""
        if not values:
            return
        assignments = ",".join(
            f"{column}={self.escape_field(table, column, value)}" for column, value in values.items()
        )
        # text() reads ":name" as a bind parameter
        assignments = assignments.replace(":", "\\:")
        buf.append(f"update {table} set {assignments} where {key}={int(key_value)}")
        self.execute_overflowed(buf)

    def delete_ids(self, table: str, column: str, ids: Iterable[int]) -> int:
        """Batched ``delete from table where column in (...)``."""
        ids = sorted(set(ids))
        if not ids:
            return 0
        tbl = _table(table)
        deleted = 0
        for batch in chunks(ids, self.settings.DELETE_BATCH_SIZE):
            deleted += self.execute(tbl.delete().where(tbl.c[column].in_(batch)))
        logger.debug("Deleted %d row(s) from %s", deleted, table)
        return deleted
