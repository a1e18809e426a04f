from __future__ import annotations

import json
import threading
from collections.abc import Callable, Iterator, Mapping, MutableMapping
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

from absence_tracker.models import (
    AbsenceCase,
    ArchivedDocument,
    District,
    HrCaseAction,
    HrCaseActionDocument,
    Profile,
    Team,
    TeamMembership,
    VacancyPeriod,
    Worker,
)

K = TypeVar("K")
V = TypeVar("V", bound=BaseModel)

SAMPLE_DATA_PATH = Path(__file__).parent.parent / "sample_data.json"


class InMemoryKeyValueDatabase(Generic[K, V]):
    """
    Simple in-memory key/value table.

    Rows are pydantic models and are copied on the way in and out, so a
    caller holding a row never sees another writer's changes.
    """

    def __init__(self, lock: threading.RLock | None = None) -> None:
        self._store: MutableMapping[K, V] = {}
        self._lock = lock or threading.RLock()

    def put(self, key: K, value: V) -> None:
        with self._lock:
            self._store[key] = value.model_copy()

    def get(self, key: K) -> V | None:
        with self._lock:
            value = self._store.get(key)
            return value.model_copy() if value is not None else None

    def delete(self, key: K) -> None:
        with self._lock:
            self._store.pop(key, None)

    def all(self) -> list[V]:
        with self._lock:
            return [value.model_copy() for value in self._store.values()]

    def filter(self, predicate: Callable[[V], bool]) -> list[V]:
        return [value for value in self.all() if predicate(value)]

    def compare_and_update(
        self, key: K, expected: Mapping[str, Any], changes: Mapping[str, Any]
    ) -> V | None:
        """
        Apply changes only if every expected field still holds its value.

        Returns the updated row, or None when the row is gone or a guarded
        field has changed since the caller read it.
        """
        with self._lock:
            current = self._store.get(key)
            if current is None:
                return None
            for field, value in expected.items():
                if getattr(current, field) != value:
                    return None
            updated = current.model_copy(update=dict(changes))
            self._store[key] = updated
            return updated.model_copy()

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def __iter__(self) -> Iterator[V]:
        return iter(self.all())

    def __len__(self) -> int:
        return len(self._store)


class Database:
    """Container for all tables. Every table shares one lock."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self.districts: InMemoryKeyValueDatabase[str, District] = (
            InMemoryKeyValueDatabase(self._lock)
        )
        self.teams: InMemoryKeyValueDatabase[str, Team] = (
            InMemoryKeyValueDatabase(self._lock)
        )
        self.workers: InMemoryKeyValueDatabase[str, Worker] = (
            InMemoryKeyValueDatabase(self._lock)
        )
        self.memberships: InMemoryKeyValueDatabase[str, TeamMembership] = (
            InMemoryKeyValueDatabase(self._lock)
        )
        self.cases: InMemoryKeyValueDatabase[str, AbsenceCase] = (
            InMemoryKeyValueDatabase(self._lock)
        )
        self.actions: InMemoryKeyValueDatabase[str, HrCaseAction] = (
            InMemoryKeyValueDatabase(self._lock)
        )
        self.action_documents: InMemoryKeyValueDatabase[
            str, HrCaseActionDocument
        ] = InMemoryKeyValueDatabase(self._lock)
        self.vacancy_periods: InMemoryKeyValueDatabase[str, VacancyPeriod] = (
            InMemoryKeyValueDatabase(self._lock)
        )
        self.documents: InMemoryKeyValueDatabase[str, ArchivedDocument] = (
            InMemoryKeyValueDatabase(self._lock)
        )
        # Bearer token -> profile
        self.sessions: InMemoryKeyValueDatabase[str, Profile] = (
            InMemoryKeyValueDatabase(self._lock)
        )

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """Hold the store lock so a multi-row write is seen all at once."""
        with self._lock:
            yield

    def get_active_memberships(
        self, team_id: str | None = None, worker_id: str | None = None
    ) -> list[TeamMembership]:
        return self.memberships.filter(
            lambda m: m.active
            and (team_id is None or m.team_id == team_id)
            and (worker_id is None or m.worker_id == worker_id)
        )

    def get_active_membership(
        self, team_id: str, worker_id: str
    ) -> TeamMembership | None:
        memberships = self.get_active_memberships(team_id, worker_id)
        return memberships[0] if memberships else None

    def get_cases_for_team(self, team_id: str) -> list[AbsenceCase]:
        return self.cases.filter(lambda c: c.team_id == team_id)

    def get_actions_for_case(self, case_id: str) -> list[HrCaseAction]:
        return self.actions.filter(lambda a: a.case_id == case_id)

    def get_documents_for_action(self, action_id: str) -> list[HrCaseActionDocument]:
        return self.action_documents.filter(lambda d: d.action_id == action_id)


def load_sample_data(db: Database, path: Path = SAMPLE_DATA_PATH) -> None:
    """Load districts, teams, workers, memberships and sessions from JSON."""
    with open(path) as f:
        data = json.load(f)

    for row in data["districts"]:
        district = District(**row)
        db.districts.put(district.id, district)

    for row in data["teams"]:
        team = Team(**row)
        db.teams.put(team.id, team)

    for row in data["workers"]:
        worker = Worker(**row)
        db.workers.put(worker.id, worker)

    for row in data["memberships"]:
        membership = TeamMembership(**row)
        db.memberships.put(membership.id, membership)

    for token, row in data["sessions"].items():
        db.sessions.put(token, Profile(**row))
