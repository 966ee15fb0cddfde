"""
Document store code.

This wraps a SQLite database and presents it as a collection of JSON
documents, which is the shape of data the rest of the app works with.
Each collection is a table with two columns:

    id    TEXT PRIMARY KEY
    data  TEXT (a JSON object)

All interactions with the database should go through this file.
"""

from collections.abc import Iterable, Iterator
import contextlib
import json
import pathlib
import re
import sqlite3
import typing
import uuid

from sqlite_utils import Database
from sqlite_utils.db import Table


class StoreError(Exception):
    """
    Base class for anything that goes wrong talking to the store.
    """


class TransactionConflict(StoreError):
    """
    Thrown if a transaction can't get the write lock, because another
    writer is holding it.
    """


class StoreUnavailable(StoreError):
    """
    Thrown if the store can't be read from or written to at all.
    """


class Document(typing.TypedDict):
    id: str
    data: dict[str, typing.Any]


Operator = typing.Literal["==", "!=", "<", "<=", ">", ">="]

Filter = tuple[str, Operator, typing.Any]

OrderBy = tuple[str, typing.Literal["asc", "desc"]]


_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_SQL_OPERATORS = {"==": "=", "!=": "!=", "<": "<", "<=": "<=", ">": ">", ">=": ">="}


def _check_identifier(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Not a valid collection or field name: {name!r}")
    return name


@contextlib.contextmanager
def _translate_errors() -> Iterator[None]:
    """
    Turn the errors from ``sqlite3`` into our own exception types.

    A locked/busy database means somebody else has the write lock;
    anything else means we can't use the store.
    """
    try:
        yield
    except sqlite3.OperationalError as err:
        message = str(err).lower()
        if "locked" in message or "busy" in message:
            raise TransactionConflict(str(err)) from err
        raise StoreUnavailable(str(err)) from err
    except sqlite3.Error as err:
        raise StoreUnavailable(str(err)) from err


def _build_select(
    table_name: str,
    *,
    filters: Iterable[Filter] = (),
    order_by: OrderBy | None = None,
    limit: int | None = None,
) -> tuple[str, list[typing.Any]]:
    """
    Build a SELECT query against the JSON fields of a collection.

    Comparing a field to ``None`` checks whether it's missing or null,
    the same as ``IS NULL`` would in plain SQL.
    """
    clauses = []
    params: list[typing.Any] = []

    for field, op, value in filters:
        path = f"json_extract(data, '$.{_check_identifier(field)}')"

        if op not in _SQL_OPERATORS:
            raise ValueError(f"Unsupported operator: {op!r}")

        if value is None:
            if op == "==":
                clauses.append(f"{path} IS NULL")
            elif op == "!=":
                clauses.append(f"{path} IS NOT NULL")
            else:
                raise ValueError(f"Can't compare {field!r} to None with {op!r}")
        else:
            clauses.append(f"{path} {_SQL_OPERATORS[op]} ?")
            params.append(value)

    sql = f"SELECT id, data FROM [{table_name}]"

    if clauses:
        sql += " WHERE " + " AND ".join(clauses)

    # Always finish the ordering on ``id``, so two documents with
    # the same field value come back in a stable order.
    if order_by is not None:
        field, direction = order_by
        if direction not in ("asc", "desc"):
            raise ValueError(f"Unsupported sort direction: {direction!r}")
        sql += (
            f" ORDER BY json_extract(data, '$.{_check_identifier(field)}')"
            f" {direction.upper()}, id {direction.upper()}"
        )
    else:
        sql += " ORDER BY id"

    if limit is not None:
        sql += " LIMIT ?"
        params.append(limit)

    return sql, params


def _to_document(row: dict[str, typing.Any]) -> Document:
    return {"id": row["id"], "data": json.loads(row["data"])}


class DocumentStore:
    """
    Wraps a SQLite database and provides collections of JSON documents,
    plus atomic transactions across them.
    """

    def __init__(self, path: pathlib.Path | str, *, timeout: float = 5.0):
        """
        Create a new instance of DocumentStore.

        The connection runs in autocommit mode; transactions are only
        opened explicitly, by ``transaction()`` and the batch writes.
        The ``timeout`` is how long (in seconds) to wait for another
        writer to release the lock before giving up.
        """
        self.path = pathlib.Path(path)

        with _translate_errors():
            con = sqlite3.connect(
                path, check_same_thread=False, timeout=timeout, isolation_level=None
            )

        self.db = Database(con)

    def close(self) -> None:
        """
        Close the underlying database connection.
        """
        self.db.close()  # type: ignore

    def collection(self, name: str) -> "Collection":
        """
        Return the named collection, creating it if it doesn't exist yet.
        """
        _check_identifier(name)

        with _translate_errors():
            Table(self.db, name).create(
                {"id": str, "data": str}, pk="id", if_not_exists=True
            )

        return Collection(self, name)

    @contextlib.contextmanager
    def _write_lock(self) -> Iterator[sqlite3.Connection]:
        """
        Run a block of statements as one atomic unit.

        This uses BEGIN IMMEDIATE, which takes the write lock up front,
        so any reads in the block see a snapshot that nobody else can
        write to until we commit.
        """
        con = self.db.conn

        with _translate_errors():
            con.execute("BEGIN IMMEDIATE")

        try:
            yield con

            with _translate_errors():
                con.execute("COMMIT")
        except BaseException:
            # SQLite rolls back by itself after some errors, so there
            # may not be anything left to roll back.
            if con.in_transaction:
                con.execute("ROLLBACK")
            raise

    @contextlib.contextmanager
    def transaction(self) -> Iterator["Transaction"]:
        """
        Open an atomic read-modify-write transaction.

        Everything done through the ``Transaction`` is committed together
        when the block exits, or rolled back if the block raises.
        """
        with self._write_lock():
            with _translate_errors():
                yield Transaction(self)


class Collection:
    """
    A named collection of documents.
    """

    def __init__(self, store: DocumentStore, name: str):
        self.store = store
        self.name = name

    def __repr__(self) -> str:
        return f"Collection({self.name!r})"

    @property
    def table(self) -> Table:
        return Table(self.store.db, self.name)

    @property
    def count(self) -> int:
        with _translate_errors():
            return self.table.count

    def add(self, data: dict[str, typing.Any], *, doc_id: str | None = None) -> str:
        """
        Add a single document, and return its ID.
        """
        return self.add_all([data], ids=None if doc_id is None else [doc_id])[0]

    def add_all(
        self,
        documents: Iterable[dict[str, typing.Any]],
        *,
        ids: list[str] | None = None,
    ) -> list[str]:
        """
        Add a batch of documents as new documents, and return their IDs.

        All the documents are written in one transaction: either they
        all appear, or none of them do.
        """
        rows = [(str(uuid.uuid4()), json.dumps(d)) for d in documents]

        if ids is not None:
            if len(ids) != len(rows):
                raise ValueError("Got a different number of IDs and documents")
            rows = [(doc_id, data) for doc_id, (_, data) in zip(ids, rows)]

        if not rows:
            return []

        with self.store._write_lock() as con:
            with _translate_errors():
                con.executemany(
                    f"INSERT INTO [{self.name}] (id, data) VALUES (?, ?)", rows
                )

        return [doc_id for doc_id, _ in rows]

    def get(self, doc_id: str) -> Document | None:
        with _translate_errors():
            rows = list(
                self.store.db.query(
                    f"SELECT id, data FROM [{self.name}] WHERE id = ?", [doc_id]
                )
            )

        if rows:
            return _to_document(rows[0])
        else:
            return None

    def stream(
        self,
        filters: Iterable[Filter] = (),
        *,
        order_by: OrderBy | None = None,
        limit: int | None = None,
    ) -> Iterator[Document]:
        """
        Yield every document that matches all of the ``filters``.
        """
        sql, params = _build_select(
            self.name, filters=filters, order_by=order_by, limit=limit
        )

        with _translate_errors():
            for row in self.store.db.query(sql, params):
                yield _to_document(row)

    def query(
        self,
        filters: Iterable[Filter] = (),
        *,
        order_by: OrderBy | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        return list(self.stream(filters, order_by=order_by, limit=limit))

    def page(self, limit: int) -> list[Document]:
        """
        Return the first ``limit`` documents, ordered by document ID.
        """
        return self.query(limit=limit)

    def delete_many(self, doc_ids: list[str]) -> int:
        """
        Delete the given documents in a single atomic operation, and
        return how many were deleted.
        """
        if not doc_ids:
            return 0

        placeholders = ", ".join("?" for _ in doc_ids)

        with self.store._write_lock() as con:
            with _translate_errors():
                cursor = con.execute(
                    f"DELETE FROM [{self.name}] WHERE id IN ({placeholders})",
                    doc_ids,
                )

        return cursor.rowcount


class Transaction:
    """
    The handle for reading and writing inside ``DocumentStore.transaction()``.

    Writes go through ``db.execute()`` rather than the sqlite-utils ``Table``
    methods, which commit on exit and would end the transaction early.
    """

    def __init__(self, store: DocumentStore):
        self.store = store

    def get(self, collection: Collection, doc_id: str) -> Document | None:
        return collection.get(doc_id)

    def query(
        self,
        collection: Collection,
        filters: Iterable[Filter] = (),
        *,
        order_by: OrderBy | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        return collection.query(filters, order_by=order_by, limit=limit)

    def set(
        self, collection: Collection, doc_id: str, data: dict[str, typing.Any]
    ) -> None:
        """
        Create or overwrite a document.
        """
        self.store.db.execute(
            f"INSERT OR REPLACE INTO [{collection.name}] (id, data) VALUES (?, ?)",
            [doc_id, json.dumps(data)],
        )

    def update(
        self, collection: Collection, doc_id: str, fields: dict[str, typing.Any]
    ) -> None:
        """
        Merge ``fields`` into an existing document.
        """
        existing = collection.get(doc_id)

        if existing is None:
            raise KeyError(f"No document {doc_id!r} in {collection.name}")

        self.store.db.execute(
            f"UPDATE [{collection.name}] SET data = ? WHERE id = ?",
            [json.dumps({**existing["data"], **fields}), doc_id],
        )

    def delete(self, collection: Collection, doc_id: str) -> None:
        self.store.db.execute(
            f"DELETE FROM [{collection.name}] WHERE id = ?", [doc_id]
        )
