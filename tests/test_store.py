"""
Tests for ``viewstats.store``.
"""

import pathlib
import typing

import pytest

from viewstats.store import (
    DocumentStore,
    StoreUnavailable,
    TransactionConflict,
)


def test_can_add_and_get_document(store: DocumentStore) -> None:
    views = store.collection("views")

    doc_id = views.add({"page": "/", "ip": "1.2.3.4"})

    assert views.get(doc_id) == {"id": doc_id, "data": {"page": "/", "ip": "1.2.3.4"}}
    assert views.count == 1


def test_get_missing_document_is_none(store: DocumentStore) -> None:
    assert store.collection("views").get("doesnotexist") is None


def test_add_with_explicit_id(store: DocumentStore) -> None:
    views = store.collection("views")

    assert views.add({"page": "/"}, doc_id="abc") == "abc"
    assert views.get("abc") == {"id": "abc", "data": {"page": "/"}}


def test_add_all_with_no_documents_is_noop(store: DocumentStore) -> None:
    views = store.collection("views")

    assert views.add_all([]) == []
    assert views.count == 0


def test_add_all_is_all_or_nothing(store: DocumentStore) -> None:
    """
    If one document in a batch can't be written, none of them are.
    """
    views = store.collection("views")
    views.add({"page": "/existing/"}, doc_id="b")

    with pytest.raises(StoreUnavailable):
        views.add_all(
            [{"page": "/a/"}, {"page": "/b/"}, {"page": "/c/"}], ids=["a", "b", "c"]
        )

    assert views.count == 1
    assert views.get("a") is None


def test_add_all_needs_one_id_per_document(store: DocumentStore) -> None:
    with pytest.raises(ValueError):
        store.collection("views").add_all([{"page": "/"}], ids=["a", "b"])


@pytest.mark.parametrize("name", ["", "views; DROP TABLE views", "1views", "my-views"])
def test_bad_collection_name_is_error(store: DocumentStore, name: str) -> None:
    with pytest.raises(ValueError, match="Not a valid collection"):
        store.collection(name)


class TestQuery:
    """
    Tests for ``Collection.query()``.
    """

    @pytest.fixture
    def populated(self, store: DocumentStore) -> DocumentStore:
        store.collection("views").add_all(
            [
                {"timestamp": "2020-07-01T10:00:00.000Z", "page": "/a/"},
                {"timestamp": "2020-07-03T10:00:00.000Z", "page": "/b/"},
                {"timestamp": "2020-07-02T10:00:00.000Z", "page": "/c/"},
                {
                    "timestamp": "2020-07-04T10:00:00.000Z",
                    "page": "/d/",
                    "internalView": False,
                },
                {
                    "timestamp": "2020-07-05T10:00:00.000Z",
                    "page": "/e/",
                    "internalView": None,
                },
            ],
            ids=["1", "2", "3", "4", "5"],
        )

        return store

    def test_filter_and_order(self, populated: DocumentStore) -> None:
        result = populated.collection("views").query(
            [("timestamp", "<", "2020-07-04")], order_by=("timestamp", "desc")
        )

        assert [doc["data"]["page"] for doc in result] == ["/b/", "/c/", "/a/"]

    def test_limit(self, populated: DocumentStore) -> None:
        result = populated.collection("views").query(
            order_by=("timestamp", "asc"), limit=2
        )

        assert [doc["data"]["page"] for doc in result] == ["/a/", "/c/"]

    def test_equality(self, populated: DocumentStore) -> None:
        result = populated.collection("views").query([("page", "==", "/c/")])

        assert [doc["id"] for doc in result] == ["3"]

    def test_equal_to_none_means_missing_or_null(
        self, populated: DocumentStore
    ) -> None:
        """
        Comparing to ``None`` finds documents where the field is missing
        or null, but not where it's ``False``.
        """
        result = populated.collection("views").query([("internalView", "==", None)])

        assert [doc["id"] for doc in result] == ["1", "2", "3", "5"]

    def test_not_equal_to_none(self, populated: DocumentStore) -> None:
        result = populated.collection("views").query([("internalView", "!=", None)])

        assert [doc["id"] for doc in result] == ["4"]

    def test_page_is_ordered_by_id(self, populated: DocumentStore) -> None:
        result = populated.collection("views").page(limit=3)

        assert [doc["id"] for doc in result] == ["1", "2", "3"]

    @pytest.mark.parametrize(
        "filters",
        [
            [("page", "LIKE", "/a/")],
            [("page", "<", None)],
            [("page) OR 1=1 --", "==", "/a/")],
        ],
    )
    def test_bad_filter_is_error(
        self, populated: DocumentStore, filters: typing.Any
    ) -> None:
        with pytest.raises(ValueError):
            populated.collection("views").query(filters)

    def test_bad_sort_direction_is_error(self, populated: DocumentStore) -> None:
        with pytest.raises(ValueError):
            populated.collection("views").query(
                order_by=("timestamp", "sideways")  # type: ignore[arg-type]
            )


def test_delete_many(store: DocumentStore) -> None:
    views = store.collection("views")
    ids = views.add_all([{"page": "/"}] * 5)

    assert views.delete_many(ids[:3]) == 3
    assert views.count == 2
    assert views.delete_many([]) == 0


class TestTransaction:
    """
    Tests for ``DocumentStore.transaction()``.
    """

    def test_changes_are_committed(self, store: DocumentStore) -> None:
        views = store.collection("views")
        views.add({"page": "/", "ip": "1.2.3.4"}, doc_id="1")

        with store.transaction() as t:
            t.update(views, "1", {"internalView": True})
            t.set(views, "2", {"page": "/new/"})

        assert views.get("1") == {
            "id": "1",
            "data": {"page": "/", "ip": "1.2.3.4", "internalView": True},
        }
        assert views.get("2") == {"id": "2", "data": {"page": "/new/"}}

    def test_changes_are_rolled_back_on_error(self, store: DocumentStore) -> None:
        views = store.collection("views")
        views.add({"page": "/"}, doc_id="1")

        with pytest.raises(RuntimeError):
            with store.transaction() as t:
                t.update(views, "1", {"internalView": True})
                t.delete(views, "1")
                raise RuntimeError("boom")

        assert views.get("1") == {"id": "1", "data": {"page": "/"}}

    def test_update_missing_document_is_error(self, store: DocumentStore) -> None:
        views = store.collection("views")

        with pytest.raises(KeyError):
            with store.transaction() as t:
                t.set(views, "1", {"page": "/"})
                t.update(views, "2", {"internalView": True})

        assert views.count == 0

    def test_second_writer_gets_conflict(self, db_path: pathlib.Path) -> None:
        """
        If another connection is holding a transaction open, we can't
        start our own.
        """
        first = DocumentStore(db_path)
        second = DocumentStore(db_path, timeout=0)

        try:
            first.collection("views")

            with first.transaction():
                with pytest.raises(TransactionConflict):
                    with second.transaction():
                        pass  # pragma: no cover
        finally:
            first.close()
            second.close()

    def test_reader_sees_state_before_commit(self, db_path: pathlib.Path) -> None:
        """
        A concurrent reader sees the old document until the transaction
        commits, and then sees the new one, never anything in between.
        """
        writer = DocumentStore(db_path)
        reader = DocumentStore(db_path)

        try:
            views = writer.collection("views")
            views.add({"page": "/"}, doc_id="1")

            reader_views = reader.collection("views")

            with writer.transaction() as t:
                t.update(views, "1", {"internalView": True})

                assert reader_views.get("1") == {
                    "id": "1",
                    "data": {"page": "/"},
                }

            assert reader_views.get("1") == {
                "id": "1",
                "data": {"page": "/", "internalView": True},
            }
        finally:
            writer.close()
            reader.close()


def test_cannot_open_store_in_missing_directory(tmp_path: pathlib.Path) -> None:
    with pytest.raises(StoreUnavailable):
        DocumentStore(tmp_path / "doesnotexist" / "views.sqlite")
