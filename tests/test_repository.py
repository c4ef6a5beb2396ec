"""Tests for the in-memory repository."""

import pytest

from coffee_production.repository import (
    DuplicateRecordError,
    InMemoryRepository,
    RecordNotFoundError,
)


def test_records_keep_insertion_order():
    repo: InMemoryRepository[str] = InMemoryRepository()
    repo.add("b", "second")
    repo.add("a", "first")

    assert repo.list() == ["second", "first"]
    assert "a" in repo
    assert len(repo) == 2


def test_duplicates_and_missing_keys():
    repo: InMemoryRepository[int] = InMemoryRepository()
    repo.add("x", 1)

    with pytest.raises(DuplicateRecordError):
        repo.add("x", 2)
    assert repo.find("y") is None
    assert repo.pop("x") == 1
    with pytest.raises(RecordNotFoundError):
        repo.pop("x")


def test_iteration_tolerates_removal():
    repo: InMemoryRepository[int] = InMemoryRepository()
    for key in ("a", "b", "c"):
        repo.add(key, len(key))

    for key, _ in zip(("a", "b", "c"), repo):
        repo.pop(key)

    assert len(repo) == 0
