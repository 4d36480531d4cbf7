"""
Diary Executor - runs approved plans against a diary store

Responsibilities:
- Dispatch navigate/query/mutation plans to the DiaryStore protocol
- Resolve which entry a delete/update/rate refers to
- Resolve event time ("jetzt", "gestern 17:00") against the clock
- Answer the seven query kinds with a short German message

Design principles:
- Only approved plans arrive here (the dialogue manager gates them)
- Store errors are re-raised as ExecutionFailure with a readable message
- No retries: a failed save goes back to the user
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Protocol

from voiceplanner.contracts import MutationType, ParsedSlots, QueryKind
from voiceplanner.plans import (
    ConfirmPlan,
    MutationPlan,
    NavigatePlan,
    Plan,
    QueryPlan,
)

logger = logging.getLogger(__name__)


class ExecutionFailure(RuntimeError):
    """The diary store rejected an approved plan. The message is shown verbatim."""


class DiaryStore(Protocol):
    """Adapter interface for the external diary backend."""

    def create_entry(self, payload: Dict[str, Any]) -> str:
        """Store a new entry and return its id."""
        ...

    def query(self, criteria: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Entries matching criteria, newest first.

        Criteria keys (all optional): medication, since (date), on_date (date).
        """
        ...

    def delete_entry(self, entry_id: str) -> None:
        ...

    def update_effect(self, entry_id: str, medication: str, rating: int) -> None:
        """Record how well a medication of an entry worked (0-10)."""
        ...

    def update_entry(self, entry_id: str, changes: Dict[str, Any]) -> None:
        ...


@dataclass(frozen=True)
class ExecutionResult:
    """
    Outcome of a successful execution.

    Attributes:
        kind: Plan kind that was executed
        message: German confirmation or query answer
        data: Kind-specific details (entry id, target, entries, count, ...)
    """
    kind: str
    message: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "data": self.data}


class DiaryExecutor:
    """Executes approved plans. Thread-safe as long as the store is."""

    def __init__(self, store: DiaryStore, clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize executor.

        Args:
            store: Diary store adapter
            clock: Wall clock for "now" and query ranges

        Raises:
            TypeError: If store is missing a DiaryStore method
        """
        for method in ("create_entry", "query", "delete_entry", "update_effect", "update_entry"):
            if not callable(getattr(store, method, None)):
                raise TypeError(f"store must have callable {method}() method")
        self.store = store
        self.clock = clock or datetime.now

    def execute(self, plan: Plan) -> ExecutionResult:
        """
        Execute one approved plan.

        Args:
            plan: Navigate, query or mutation plan (a ConfirmPlan is unwrapped)

        Returns:
            ExecutionResult

        Raises:
            ExecutionFailure: If the store raises anything or the target entry is missing
            ValueError: If plan is not executable (slot filling, disambiguation, ...)
        """
        if isinstance(plan, ConfirmPlan):
            plan = plan.pending

        try:
            if isinstance(plan, NavigatePlan):
                return ExecutionResult("navigate", plan.summary, {"target": plan.target.value})
            if isinstance(plan, QueryPlan):
                return self._run_query(plan)
            if isinstance(plan, MutationPlan):
                return self._run_mutation(plan)
        except ExecutionFailure:
            raise
        except Exception as e:
            # Store errors of any type surface as ExecutionFailure
            logger.error(f"Diary store error while executing {plan.kind} plan: {e}", exc_info=True)
            message = str(e.args[0]) if e.args else type(e).__name__
            raise ExecutionFailure(message) from e

        raise ValueError(f"{type(plan).__name__} is not executable")

    # =========================================================================
    # Queries
    # =========================================================================

    def _run_query(self, plan: QueryPlan) -> ExecutionResult:
        filters = plan.filters
        kind = plan.query_kind
        since = self._since(filters.range_days)

        if kind is QueryKind.LAST_ENTRY:
            entries = self.store.query({})
            return _single(kind, entries, "Letzter Eintrag", "Keine Einträge gefunden")

        if kind is QueryKind.LAST_ENTRY_WITH_MED:
            entries = self.store.query({"medication": filters.medication})
            return _single(
                kind, entries,
                f"Letzter Eintrag mit {filters.medication}",
                f"Kein Eintrag mit {filters.medication} gefunden",
            )

        if kind is QueryKind.LAST_INTAKE_MED:
            criteria = {"medication": filters.medication} if filters.medication else {}
            entries = [e for e in self.store.query(criteria) if e.get("medications")]
            if not entries:
                return ExecutionResult(kind.value, "Keine Einnahme gefunden", {"entry": None})
            latest = entries[0]
            meds = ", ".join(latest["medications"])
            return ExecutionResult(
                kind.value,
                f"Zuletzt {meds}: {_when(latest)}",
                {"entry": latest},
            )

        if kind is QueryKind.LIST_ENTRIES_WITH_MED:
            entries = self.store.query({"medication": filters.medication})
            return ExecutionResult(
                kind.value,
                f"{len(entries)} Einträge mit {filters.medication}",
                {"entries": entries},
            )

        if kind is QueryKind.COUNT_MED_RANGE:
            entries = self.store.query({"medication": filters.medication, "since": since})
            days = {e["occurred_at"][:10] for e in entries}
            return ExecutionResult(
                kind.value,
                f"{filters.medication} an {len(days)} Tagen in den letzten {filters.range_days} Tagen",
                {"count": len(days)},
            )

        if kind is QueryKind.COUNT_MIGRAINE_RANGE:
            entries = [
                e for e in self.store.query({"since": since})
                if e.get("pain_level") is not None
            ]
            return ExecutionResult(
                kind.value,
                f"{len(entries)} Einträge in den letzten {filters.range_days} Tagen",
                {"count": len(entries)},
            )

        if kind is QueryKind.AVG_PAIN_RANGE:
            levels = [
                e["pain_level"] for e in self.store.query({"since": since})
                if e.get("pain_level") is not None
            ]
            if not levels:
                return ExecutionResult(kind.value, "Keine Einträge im Zeitraum", {"average": None})
            average = round(sum(levels) / len(levels), 1)
            return ExecutionResult(
                kind.value,
                f"Durchschnittliche Stärke: {average:.1f}",
                {"average": average},
            )

        raise ValueError(f"Unknown query kind: {kind}")

    def _since(self, range_days: Optional[int]) -> Optional[date]:
        if range_days is None:
            return None
        return (self.clock() - timedelta(days=range_days)).date()

    # =========================================================================
    # Mutations
    # =========================================================================

    def _run_mutation(self, plan: MutationPlan) -> ExecutionResult:
        slots = plan.payload
        mutation = plan.mutation_type

        if mutation is MutationType.CREATE:
            payload = self.entry_payload(slots)
            entry_id = self.store.create_entry(payload)
            logger.info(f"Created diary entry {entry_id}")
            level = f": Stärke {slots.pain_level}" if slots.pain_level is not None else ""
            return ExecutionResult(mutation.value, f"Eintrag erstellt{level}", {"entry_id": entry_id})

        target = self._resolve_target(slots, with_medication=mutation is MutationType.RATE)

        if mutation is MutationType.DELETE:
            self.store.delete_entry(target["id"])
            logger.info(f"Deleted diary entry {target['id']}")
            return ExecutionResult(mutation.value, "Eintrag gelöscht", {"entry_id": target["id"]})

        if mutation is MutationType.UPDATE:
            changes: Dict[str, Any] = {}
            if slots.pain_level is not None:
                changes["pain_level"] = slots.pain_level
            if slots.medications is not None:
                changes["medications"] = list(slots.medication_labels)
            if not changes:
                raise ExecutionFailure("Keine Änderungen angegeben")
            self.store.update_entry(target["id"], changes)
            return ExecutionResult(mutation.value, "Eintrag geändert", {"entry_id": target["id"], **changes})

        if mutation is MutationType.RATE:
            if slots.rating is None:
                raise ExecutionFailure("Keine Bewertung angegeben")
            medication = slots.medications[0].name if slots.medications else target["medications"][0]
            self.store.update_effect(target["id"], medication, slots.rating)
            return ExecutionResult(
                mutation.value,
                f"Wirkung von {medication} bewertet: {slots.rating}/10",
                {"entry_id": target["id"], "medication": medication, "rating": slots.rating},
            )

        raise ValueError(f"Unknown mutation type: {mutation}")

    def entry_payload(self, slots: ParsedSlots) -> Dict[str, Any]:
        """Store payload for a new entry; event time resolved against the clock."""
        return {
            "occurred_at": self.resolve_time(slots).isoformat(timespec="minutes"),
            "pain_level": slots.pain_level,
            "medications": list(slots.medication_labels),
            "notes": slots.notes,
            "tags": list(slots.tags),
            "entry_type": slots.entry_type.value if slots.entry_type else None,
        }

    def resolve_time(self, slots: ParsedSlots) -> datetime:
        """
        Event time of a new entry.

        Missing parts come from the clock: a date without clock time keeps
        the current time of day, a clock time without date means today.
        """
        now = self.clock()
        if slots.date is None and slots.time is None:
            return now.replace(second=0, microsecond=0)
        day = slots.date or now.date()
        clock = slots.time or now.time()
        return datetime.combine(day, clock, tzinfo=now.tzinfo).replace(second=0, microsecond=0)

    def _resolve_target(self, slots: ParsedSlots, with_medication: bool = False) -> Dict[str, Any]:
        """Entry a delete/update/rate refers to: ordinal, else date, else latest."""
        criteria: Dict[str, Any] = {}
        if slots.referenced_date is not None and slots.ordinal is None:
            criteria["on_date"] = slots.referenced_date
        if with_medication and slots.medications:
            criteria["medication"] = slots.medications[0].name

        entries = self.store.query(criteria)
        if with_medication:
            entries = [e for e in entries if e.get("medications")]

        index = (slots.ordinal or 1) - 1
        if index >= len(entries):
            raise ExecutionFailure("Kein passender Eintrag gefunden")
        return entries[index]


def _when(entry: Dict[str, Any]) -> str:
    return datetime.fromisoformat(entry["occurred_at"]).strftime("%d.%m.%Y %H:%M")


def _single(kind: QueryKind, entries: List[Dict[str, Any]], found: str, missing: str) -> ExecutionResult:
    if not entries:
        return ExecutionResult(kind.value, missing, {"entry": None})
    return ExecutionResult(kind.value, f"{found}: {_when(entries[0])}", {"entry": entries[0]})


class InMemoryDiaryStore:
    """
    DiaryStore kept in a list. Used by the console harness, the Flask
    adapter and tests.
    """

    def __init__(self, entries: Optional[List[Dict[str, Any]]] = None):
        self._entries: List[Dict[str, Any]] = []
        self._next_id = 1
        for entry in entries or []:
            self.create_entry(entry)

    def create_entry(self, payload: Dict[str, Any]) -> str:
        if not payload.get("occurred_at"):
            raise ValueError("Entry needs occurred_at")
        entry_id = payload.get("id") or f"entry-{self._next_id}"
        self._next_id += 1
        entry = {"medications": [], "effects": {}, **payload, "id": entry_id}
        self._entries.append(entry)
        return entry_id

    def query(self, criteria: Dict[str, Any]) -> List[Dict[str, Any]]:
        medication = (criteria.get("medication") or "").lower()
        since = criteria.get("since")
        on_date = criteria.get("on_date")

        matches = []
        for entry in self._entries:
            day = date.fromisoformat(entry["occurred_at"][:10])
            if medication and not any(medication in m.lower() for m in entry["medications"]):
                continue
            if since is not None and day < since:
                continue
            if on_date is not None and day != on_date:
                continue
            matches.append(dict(entry))

        matches.sort(key=lambda e: e["occurred_at"], reverse=True)
        return matches

    def delete_entry(self, entry_id: str) -> None:
        entry = self._get(entry_id)
        self._entries.remove(entry)

    def update_effect(self, entry_id: str, medication: str, rating: int) -> None:
        entry = self._get(entry_id)
        entry["effects"] = {**entry["effects"], medication: rating}

    def update_entry(self, entry_id: str, changes: Dict[str, Any]) -> None:
        self._get(entry_id).update(changes)

    def _get(self, entry_id: str) -> Dict[str, Any]:
        for entry in self._entries:
            if entry["id"] == entry_id:
                return entry
        raise KeyError(f"Eintrag {entry_id} existiert nicht")

    def __len__(self):
        return len(self._entries)
