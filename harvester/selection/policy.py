"""Per-book decision whether the current harvest run should process it.

The decision table is a list of rules evaluated top to bottom; the first rule
whose predicate matches decides. Each rule carries a distinct reason so that
skips and reprocessing can be traced from the logs.
"""

import functools
import random
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

from harvester.analysis.versioning import Version
from harvester.database.models import DocumentRecord, HarvestState
from harvester.processor.log_entries import missing_fonts

STALE_AFTER = timedelta(days=2)

NEEDED_STATES = frozenset({HarvestState.NEW, HarvestState.UPDATED, HarvestState.REQUESTED})
FRESH_STATES = NEEDED_STATES | {HarvestState.UNKNOWN}


class HarvestMode(str, Enum):
    DEFAULT = "default"
    ALL = "all"
    NEEDED_ONLY = "needed-only"
    RETRY_FAILURES = "retry-failures"
    FORCE_ALL = "force-all"


@dataclass(frozen=True)
class SelectionDecision:
    process: bool
    reason: str

    def __bool__(self) -> bool:
        return self.process


@dataclass(frozen=True)
class Candidate:
    """What the rules look at for one book."""

    record: DocumentRecord
    state: HarvestState
    mode: HarvestMode
    current: Version
    recorded: Version
    is_stale: bool
    still_missing_fonts: Callable[[], list[str]]


@dataclass(frozen=True)
class Rule:
    applies: Callable[[Candidate], bool]
    process: bool
    reason: str | Callable[[Candidate], str]

    def decide(self, candidate: Candidate) -> SelectionDecision:
        reason = self.reason(candidate) if callable(self.reason) else self.reason
        return SelectionDecision(self.process, reason)


def _default(state: HarvestState) -> Callable[[Candidate], bool]:
    return lambda c: c.mode is HarvestMode.DEFAULT and c.state is state


def _first_missing_font(candidate: Candidate) -> str:
    return f"SKIP: Still missing font {candidate.still_missing_fonts()[0]}"


RULES: list[Rule] = [
    Rule(lambda c: c.mode is HarvestMode.FORCE_ALL, True, "PROCESS: Mode = ForceAll"),
    Rule(
        lambda c: c.state is HarvestState.FAILED_PERMANENTLY,
        False,
        "SKIP: Marked as failed permanently",
    ),
    Rule(lambda c: not c.record.in_circulation, False, "SKIP: Not in circulation"),
    Rule(
        lambda c: c.state is HarvestState.IN_PROGRESS and not c.is_stale,
        False,
        "SKIP: Recently in progress",
    ),
    Rule(lambda c: c.mode is HarvestMode.ALL, True, "PROCESS: Mode = All"),
    Rule(
        lambda c: c.mode is HarvestMode.NEEDED_ONLY and c.state in NEEDED_STATES,
        True,
        "PROCESS: Requested, New, or Updated state",
    ),
    Rule(
        lambda c: c.mode is HarvestMode.NEEDED_ONLY,
        False,
        "SKIP: Not requested, new, or updated",
    ),
    Rule(
        lambda c: c.mode is HarvestMode.RETRY_FAILURES and c.recorded > c.current,
        False,
        "SKIP: Previously processed by newer version",
    ),
    Rule(lambda c: c.mode is HarvestMode.RETRY_FAILURES, True, "PROCESS: Retrying failure"),
    Rule(
        lambda c: c.mode is HarvestMode.DEFAULT and c.state in FRESH_STATES,
        True,
        "PROCESS: New, Updated, Requested, or Unknown state",
    ),
    Rule(
        lambda c: _default(HarvestState.DONE)(c) and c.current.major > c.recorded.major,
        True,
        "PROCESS: Updated major version, so updating output",
    ),
    Rule(_default(HarvestState.DONE), False, "SKIP: Already processed successfully"),
    Rule(
        lambda c: _default(HarvestState.ABORTED)(c) and c.current >= c.recorded,
        True,
        "PROCESS: Re-starting book that was previously aborted",
    ),
    Rule(
        _default(HarvestState.ABORTED),
        False,
        "SKIP: Skipping aborted book that was previously touched by a newer version",
    ),
    Rule(
        lambda c: _default(HarvestState.IN_PROGRESS)(c) and c.current > c.recorded,
        True,
        "PROCESS: Retrying stuck book of older version",
    ),
    Rule(
        lambda c: _default(HarvestState.IN_PROGRESS)(c) and c.current == c.recorded,
        True,
        "PROCESS: Retrying stuck book of current version",
    ),
    Rule(
        _default(HarvestState.IN_PROGRESS),
        False,
        "SKIP: Skipping stuck book that was previously processed by a newer version",
    ),
    Rule(
        lambda c: _default(HarvestState.FAILED)(c)
        and c.current > c.recorded
        and bool(c.still_missing_fonts()),
        False,
        _first_missing_font,
    ),
    Rule(
        lambda c: _default(HarvestState.FAILED)(c) and c.current > c.recorded,
        True,
        "PROCESS: Retrying failed book of older version",
    ),
    Rule(
        lambda c: _default(HarvestState.FAILED)(c) and c.current == c.recorded,
        False,
        "SKIP: Marked as failed by current version",
    ),
    Rule(_default(HarvestState.FAILED), False, "SKIP: Marked as failed by newer version"),
]


class FontPresence(ABC):
    """Re-checks whether previously missing fonts are still unavailable."""

    @abstractmethod
    def get_missing_fonts(self, font_names: Iterable[str]) -> list[str]:
        raise NotImplementedError


def should_process(
    record: DocumentRecord,
    mode: HarvestMode,
    current_version: Version,
    fonts: FontPresence,
    now: datetime | None = None,
) -> SelectionDecision:
    """Decide whether this run processes the book, and why. Never mutates record."""
    state = HarvestState.parse(record.harvest_state)
    now = now or datetime.now(timezone.utc)
    started = record.harvest_started_at

    @functools.cache
    def still_missing() -> list[str]:
        previously_missing = missing_fonts(record.harvest_log)
        return fonts.get_missing_fonts(previously_missing) if previously_missing else []

    candidate = Candidate(
        record=record,
        state=state,
        mode=mode,
        current=current_version,
        recorded=record.harvester_version,
        is_stale=started is None or now - started > STALE_AFTER,
        still_missing_fonts=still_missing,
    )
    for rule in RULES:
        if rule.applies(candidate):
            return rule.decide(candidate)
    raise ValueError(f"No selection rule matched book {record.object_id} in state {state.value}")


PRIORITY_TIERS = (HarvestState.REQUESTED, HarvestState.NEW, HarvestState.UPDATED)


def prioritize(
    records: Iterable[DocumentRecord], rng: random.Random | None = None
) -> list[DocumentRecord]:
    """Requested books first, then New, then Updated, then the rest; shuffled within tiers."""
    rng = rng or random.Random()
    tiers: list[list[DocumentRecord]] = [[] for _ in range(len(PRIORITY_TIERS) + 1)]
    for record in records:
        try:
            state = HarvestState.parse(record.harvest_state)
        except ValueError:
            state = None
        tier = PRIORITY_TIERS.index(state) if state in PRIORITY_TIERS else len(PRIORITY_TIERS)
        tiers[tier].append(record)
    ordered: list[DocumentRecord] = []
    for tier_records in tiers:
        rng.shuffle(tier_records)
        ordered.extend(tier_records)
    return ordered
