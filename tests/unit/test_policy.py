import copy
import random
from collections.abc import Callable
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from harvester.analysis.versioning import Version
from harvester.database.models import DocumentRecord
from harvester.selection.policy import (
    FontPresence,
    HarvestMode,
    prioritize,
    should_process,
)

CURRENT = Version(2, 5)


def _fonts(missing: list[str] | None = None) -> MagicMock:
    fonts = MagicMock(spec=FontPresence)
    fonts.get_missing_fonts.return_value = missing or []
    return fonts


def _versioned(
    make_record: Callable[..., DocumentRecord],
    state: str,
    version: Version | None,
    **overrides,
) -> DocumentRecord:
    if version is not None:
        overrides.setdefault("harvester_major_version", version.major)
        overrides.setdefault("harvester_minor_version", version.minor)
    return make_record(harvest_state=state, **overrides)


def _decide(record: DocumentRecord, mode: HarvestMode, now: datetime, fonts=None):
    return should_process(record, mode, CURRENT, fonts or _fonts(), now=now)


class TestForceAll:
    @pytest.mark.parametrize("state", ["FailedIndefinitely", "InProgress", "Done"])
    def test_processes_everything(self, make_record, now, state: str) -> None:
        record = _versioned(
            make_record, state, Version(9, 0), in_circulation=False, harvest_started_at=now
        )

        decision = _decide(record, HarvestMode.FORCE_ALL, now)

        assert decision.process is True
        assert decision.reason == "PROCESS: Mode = ForceAll"


class TestGlobalSkips:
    @pytest.mark.parametrize(
        "mode",
        [
            HarvestMode.DEFAULT,
            HarvestMode.ALL,
            HarvestMode.NEEDED_ONLY,
            HarvestMode.RETRY_FAILURES,
        ],
    )
    def test_permanent_failure_is_skipped_in_every_other_mode(
        self, make_record, now, mode: HarvestMode
    ) -> None:
        record = _versioned(make_record, "FailedIndefinitely", Version(1, 0))

        decision = _decide(record, mode, now)

        assert not decision
        assert decision.reason == "SKIP: Marked as failed permanently"

    def test_out_of_circulation_is_skipped(self, make_record, now) -> None:
        record = make_record(harvest_state="New", in_circulation=False)

        decision = _decide(record, HarvestMode.ALL, now)

        assert decision.reason == "SKIP: Not in circulation"

    def test_recent_in_progress_is_skipped(self, make_record, now) -> None:
        record = _versioned(
            make_record, "InProgress", Version(1, 0), harvest_started_at=now - timedelta(hours=3)
        )

        decision = _decide(record, HarvestMode.ALL, now)

        assert decision.reason == "SKIP: Recently in progress"

    def test_in_progress_without_start_time_counts_as_stale(self, make_record, now) -> None:
        record = _versioned(make_record, "InProgress", Version(1, 0))

        decision = _decide(record, HarvestMode.ALL, now)

        assert decision.reason == "PROCESS: Mode = All"


class TestModes:
    def test_all_processes_done_books(self, make_record, now) -> None:
        record = _versioned(make_record, "Done", CURRENT)

        assert _decide(record, HarvestMode.ALL, now).reason == "PROCESS: Mode = All"

    @pytest.mark.parametrize("state", ["New", "Updated", "Requested"])
    def test_needed_only_processes_needed_states(self, make_record, now, state: str) -> None:
        record = make_record(harvest_state=state)

        decision = _decide(record, HarvestMode.NEEDED_ONLY, now)

        assert decision.process is True
        assert decision.reason == "PROCESS: Requested, New, or Updated state"

    @pytest.mark.parametrize("state", ["Unknown", "Done", "Failed", "Aborted"])
    def test_needed_only_skips_others(self, make_record, now, state: str) -> None:
        record = _versioned(make_record, state, Version(1, 0))

        decision = _decide(record, HarvestMode.NEEDED_ONLY, now)

        assert decision.process is False
        assert decision.reason == "SKIP: Not requested, new, or updated"

    def test_retry_failures_retries(self, make_record, now) -> None:
        record = _versioned(make_record, "Failed", CURRENT)

        decision = _decide(record, HarvestMode.RETRY_FAILURES, now)

        assert decision.reason == "PROCESS: Retrying failure"

    def test_retry_failures_leaves_newer_versions_alone(self, make_record, now) -> None:
        record = _versioned(make_record, "Failed", Version(2, 6))

        decision = _decide(record, HarvestMode.RETRY_FAILURES, now)

        assert decision.reason == "SKIP: Previously processed by newer version"


class TestDefaultMode:
    @pytest.mark.parametrize("state", ["New", "Updated", "Requested", "Unknown", ""])
    def test_fresh_states_are_processed(self, make_record, now, state: str) -> None:
        record = _versioned(make_record, state, Version(3, 0))

        decision = _decide(record, HarvestMode.DEFAULT, now)

        assert decision.reason == "PROCESS: New, Updated, Requested, or Unknown state"

    def test_done_by_older_major_is_reprocessed(self, make_record, now) -> None:
        record = _versioned(make_record, "Done", Version(1, 9))

        decision = _decide(record, HarvestMode.DEFAULT, now)

        assert decision.reason == "PROCESS: Updated major version, so updating output"

    @pytest.mark.parametrize("version", [Version(2, 0), Version(2, 5), Version(3, 0)])
    def test_done_by_same_or_newer_major_is_skipped(
        self, make_record, now, version: Version
    ) -> None:
        record = _versioned(make_record, "Done", version)

        decision = _decide(record, HarvestMode.DEFAULT, now)

        assert decision.reason == "SKIP: Already processed successfully"

    @pytest.mark.parametrize(
        ("version", "process", "reason"),
        [
            (Version(2, 5), True, "PROCESS: Re-starting book that was previously aborted"),
            (Version(1, 0), True, "PROCESS: Re-starting book that was previously aborted"),
            (
                Version(2, 6),
                False,
                "SKIP: Skipping aborted book that was previously touched by a newer version",
            ),
        ],
    )
    def test_aborted(self, make_record, now, version: Version, process: bool, reason: str) -> None:
        record = _versioned(make_record, "Aborted", version)

        decision = _decide(record, HarvestMode.DEFAULT, now)

        assert (decision.process, decision.reason) == (process, reason)

    @pytest.mark.parametrize(
        ("version", "process", "reason"),
        [
            (Version(2, 4), True, "PROCESS: Retrying stuck book of older version"),
            (Version(2, 5), True, "PROCESS: Retrying stuck book of current version"),
            (
                Version(3, 0),
                False,
                "SKIP: Skipping stuck book that was previously processed by a newer version",
            ),
        ],
    )
    def test_stale_in_progress(
        self, make_record, now, version: Version, process: bool, reason: str
    ) -> None:
        record = _versioned(
            make_record, "InProgress", version, harvest_started_at=now - timedelta(days=3)
        )

        decision = _decide(record, HarvestMode.DEFAULT, now)

        assert (decision.process, decision.reason) == (process, reason)

    def test_failed_by_older_version_is_retried(self, make_record, now) -> None:
        record = _versioned(make_record, "Failed", Version(2, 4))

        decision = _decide(record, HarvestMode.DEFAULT, now)

        assert decision.reason == "PROCESS: Retrying failed book of older version"

    def test_failed_by_older_version_waits_for_missing_font(self, make_record, now) -> None:
        record = _versioned(
            make_record,
            "Failed",
            Version(2, 4),
            harvest_log=["Error: MissingFont - Andika New Basic", "Info: ArtifactSuitability - x"],
        )
        fonts = _fonts(["Andika New Basic"])

        decision = _decide(record, HarvestMode.DEFAULT, now, fonts)

        assert decision.process is False
        assert decision.reason == "SKIP: Still missing font Andika New Basic"
        fonts.get_missing_fonts.assert_called_once_with(["Andika New Basic"])

    def test_failed_book_retried_once_font_is_installed(self, make_record, now) -> None:
        record = _versioned(
            make_record,
            "Failed",
            Version(2, 4),
            harvest_log=["Error: MissingFont - Andika New Basic"],
        )

        decision = _decide(record, HarvestMode.DEFAULT, now, _fonts([]))

        assert decision.reason == "PROCESS: Retrying failed book of older version"

    def test_fonts_not_checked_without_missing_font_entries(self, make_record, now) -> None:
        record = _versioned(make_record, "Failed", Version(2, 4))
        fonts = _fonts()

        _decide(record, HarvestMode.DEFAULT, now, fonts)

        fonts.get_missing_fonts.assert_not_called()

    def test_failed_by_current_version_is_skipped(self, make_record, now) -> None:
        record = _versioned(make_record, "Failed", CURRENT)

        decision = _decide(record, HarvestMode.DEFAULT, now)

        assert decision.reason == "SKIP: Marked as failed by current version"

    def test_failed_by_newer_version_is_skipped(self, make_record, now) -> None:
        record = _versioned(make_record, "Failed", Version(3, 1))

        decision = _decide(record, HarvestMode.DEFAULT, now)

        assert decision.reason == "SKIP: Marked as failed by newer version"


class TestShouldProcessContract:
    def test_invalid_state_raises(self, make_record, now) -> None:
        record = make_record(harvest_state="Exploded")

        with pytest.raises(ValueError, match="Invalid harvest state"):
            _decide(record, HarvestMode.DEFAULT, now)

    def test_does_not_mutate_record(self, make_record, now) -> None:
        record = _versioned(
            make_record,
            "Failed",
            Version(2, 4),
            harvest_log=["Error: MissingFont - Andika"],
        )
        before = copy.deepcopy(record)

        _decide(record, HarvestMode.DEFAULT, now, _fonts(["Andika"]))

        assert record == before

    def test_decision_is_truthy_only_when_processing(self, make_record, now) -> None:
        assert _decide(make_record(harvest_state="New"), HarvestMode.DEFAULT, now)
        assert not _decide(
            make_record(harvest_state="New", in_circulation=False), HarvestMode.DEFAULT, now
        )


class TestPrioritize:
    def test_orders_requested_new_updated_then_rest(self, make_record) -> None:
        records = [
            make_record(object_id="done", harvest_state="Done"),
            make_record(object_id="updated", harvest_state="Updated"),
            make_record(object_id="failed", harvest_state="Failed"),
            make_record(object_id="new", harvest_state="New"),
            make_record(object_id="requested", harvest_state="Requested"),
        ]

        ordered = prioritize(records, random.Random(7))

        assert [r.object_id for r in ordered[:3]] == ["requested", "new", "updated"]
        assert {r.object_id for r in ordered[3:]} == {"done", "failed"}

    def test_keeps_every_record(self, make_record) -> None:
        records = [make_record(object_id=f"b{i}", harvest_state="New") for i in range(20)]

        ordered = prioritize(records, random.Random(1))

        assert sorted(r.object_id for r in ordered) == sorted(r.object_id for r in records)

    def test_shuffles_within_tier(self, make_record) -> None:
        records = [make_record(object_id=f"b{i:02}", harvest_state="New") for i in range(20)]

        orders = {
            tuple(r.object_id for r in prioritize(records, random.Random(seed)))
            for seed in range(5)
        }

        assert len(orders) > 1

    def test_invalid_state_goes_last(self, make_record) -> None:
        records = [
            make_record(object_id="odd", harvest_state="Exploded"),
            make_record(object_id="new", harvest_state="New"),
        ]

        ordered = prioritize(records, random.Random(0))

        assert [r.object_id for r in ordered] == ["new", "odd"]
