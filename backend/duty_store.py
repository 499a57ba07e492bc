# backend/duty_store.py
"""
In-memory Duty Record Store.

One DutyState per crew id, replaced wholesale by put(). Readers work on an
immutable snapshot of the record map and never take a lock; writers serialise
per crew id (and briefly on the map swap), so concurrent swaps naming the same
id cannot interleave.

The store is an explicit handle: every component that needs crew state takes
it as an argument.
"""

from contextlib import contextmanager
from pathlib import Path
import json
import logging
import os
import threading
from typing import Dict, Iterator, List, Optional

from pydantic import ValidationError

from .errors import InvalidInputError
from .models import CrewIdentity, DutyState, DutyStateType

log = logging.getLogger("uvicorn.error")

ROSTER_PATH = Path(os.environ.get("CREW_ROSTER_PATH") or Path(__file__).resolve().parent / "data" / "crew_roster.json")


class DutyRecordStore:
    def __init__(self) -> None:
        self._states: Dict[str, DutyState] = {}
        self._members: Dict[str, CrewIdentity] = {}
        self._map_lock = threading.Lock()
        self._registry_lock = threading.Lock()
        self._key_locks: Dict[str, threading.RLock] = {}

    # ---------- reads ----------
    def get(self, crew_id: str) -> Optional[DutyState]:
        return self._states.get(crew_id)

    def list_by_state(self, state: DutyStateType) -> List[DutyState]:
        snapshot = self._states
        return [snapshot[k] for k in sorted(snapshot) if snapshot[k].state == state]

    def list_by_location(self, code: str) -> List[DutyState]:
        snapshot = self._states
        return [snapshot[k] for k in sorted(snapshot) if snapshot[k].current_location == code]

    def get_member(self, crew_id: str) -> Optional[CrewIdentity]:
        return self._members.get(crew_id)

    def members(self) -> List[CrewIdentity]:
        snapshot = self._members
        return [snapshot[k] for k in sorted(snapshot)]

    def __len__(self) -> int:
        return len(self._states)

    # ---------- writes ----------
    def add_member(self, member: CrewIdentity) -> None:
        with self._map_lock:
            members = dict(self._members)
            members[member.crew_id] = member
            self._members = members

    def put(self, state: DutyState) -> None:
        """Replace the whole record for state.crew_id."""
        with self._lock_for(state.crew_id):
            with self._map_lock:
                states = dict(self._states)
                states[state.crew_id] = state
                self._states = states

    @contextmanager
    def locked(self, *crew_ids: str) -> Iterator[None]:
        """
        Hold the write locks of several crew ids for a multi-record transition.
        Locks are taken in sorted id order so two transitions never deadlock.
        Ids with no stored record get no lock; the caller's lookup rejects them.
        """
        states = self._states
        locks = [self._lock_for(cid) for cid in sorted(set(crew_ids)) if cid in states]
        for lock in locks:
            lock.acquire()
        try:
            yield
        finally:
            for lock in reversed(locks):
                lock.release()

    def _lock_for(self, crew_id: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._key_locks.get(crew_id)
            if lock is None:
                lock = threading.RLock()
                self._key_locks[crew_id] = lock
            return lock


# ---------- Roster loading ----------
def load_roster(path: Optional[Path] = None, store: Optional[DutyRecordStore] = None) -> DutyRecordStore:
    """
    Seed a store from a roster JSON file: {"crew": [CrewIdentity...], "states": [DutyState...]}.
    A state whose crew id has no identity is rejected.
    """
    path = Path(path or ROSTER_PATH)
    store = store if store is not None else DutyRecordStore()
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise InvalidInputError(f"Cannot read roster {path}: {e}") from e

    try:
        members = [CrewIdentity.model_validate(c) for c in raw.get("crew", [])]
        states = [DutyState.model_validate(s) for s in raw.get("states", [])]
    except ValidationError as e:
        raise InvalidInputError(f"Invalid roster {path.name}: {e}") from e

    for m in members:
        store.add_member(m)
    for s in states:
        if store.get_member(s.crew_id) is None:
            raise InvalidInputError(f"Roster state for unknown crew member {s.crew_id}")
        store.put(s)

    log.info("Roster loaded from %s: %d crew, %d duty states", path.name, len(members), len(states))
    return store
