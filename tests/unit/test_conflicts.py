"""Unit tests for conflict detection."""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from ntm_robot.conflicts.detector import (
    ConflictDetector,
    find_likely_modifiers,
    find_reservation_holders,
    find_reservation_overlaps,
    parse_porcelain,
    score_conflict,
    summarize_conflicts,
)
from ntm_robot.conflicts.models import (
    ActivityWindow,
    ChangeKind,
    ConfidenceLevel,
    ConflictReason,
    DetectedConflict,
    GitFileStatus,
    Reservation,
    confidence_level,
)
from ntm_robot.conflicts.patterns import match_pattern
from ntm_robot.utils.logging import ToolError

NOW = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


def reservation(pattern, agent, minutes=30, released=False):
    return Reservation(
        pattern=pattern,
        agent_name=agent,
        expires_at=NOW + timedelta(minutes=minutes),
        released_at=NOW if released else None,
    )


class TestMatchPattern:
    """Test reservation path patterns."""

    @pytest.mark.parametrize(
        "pattern,path,expected",
        [
            ("src/main.go", "src/main.go", True),
            ("src/**", "src/a/b/c.go", True),
            ("src/**", "lib/a.go", False),
            ("src/**/test.go", "src/a/b/test.go", True),
            ("src/**/*.go", "src/a/b/x.go", True),
            ("src/**/*.go", "src/a/b/x.py", False),
            ("src/*.go", "src/main.go", True),
            ("src/*.go", "src/pkg/main.go", False),
            ("*.go", "deep/dir/main.go", True),
            ("src/", "src/main.go", True),
            ("src", "src/main.go", True),
            ("src", "srcx/main.go", False),
        ],
    )
    def test_match(self, pattern, path, expected):
        """Test each supported pattern form."""
        assert match_pattern(pattern, path) is expected


class TestModels:
    """Test conflict data models."""

    def test_window_overlap_is_strict(self):
        """Test touching windows do not overlap."""
        a = ActivityWindow("%1", "claude", NOW, NOW + timedelta(seconds=10))
        b = ActivityWindow("%2", "codex", NOW + timedelta(seconds=10), NOW + timedelta(seconds=20))
        c = ActivityWindow("%3", "codex", NOW + timedelta(seconds=5), NOW + timedelta(seconds=15))
        assert not a.overlaps(b)
        assert a.overlaps(c)
        assert a.contains(NOW + timedelta(seconds=10))

    def test_reservation_active(self):
        """Test released or expired reservations are inactive."""
        assert reservation("a", "x").is_active(NOW)
        assert not reservation("a", "x", released=True).is_active(NOW)
        assert not reservation("a", "x", minutes=-1).is_active(NOW)

    @pytest.mark.parametrize(
        "status,kind",
        [
            ("??", ChangeKind.CREATE),
            ("A", ChangeKind.CREATE),
            ("AM", ChangeKind.CREATE),
            ("D", ChangeKind.DELETE),
            ("R", ChangeKind.RENAME),
            ("M", ChangeKind.MODIFY),
        ],
    )
    def test_change_kind(self, status, kind):
        """Test porcelain status codes map to change kinds."""
        assert GitFileStatus("f", status).change_kind is kind

    @pytest.mark.parametrize(
        "value,level",
        [
            (0.95, ConfidenceLevel.HIGH),
            (0.9, ConfidenceLevel.HIGH),
            (0.75, ConfidenceLevel.MEDIUM),
            (0.5, ConfidenceLevel.LOW),
            (0.49, ConfidenceLevel.NONE),
        ],
    )
    def test_confidence_level(self, value, level):
        """Test confidence bands."""
        assert confidence_level(value) is level

    def test_conflict_to_dict(self):
        """Test serialization of a detected conflict."""
        conflict = DetectedConflict("a.py", ConflictReason.RESERVATION_VIOLATION, 0.85)
        assert conflict.level is ConfidenceLevel.MEDIUM
        assert conflict.to_dict()["reason"] == "reservation_violation"


class TestHelpers:
    """Test conflict detection helpers."""

    def test_parse_porcelain(self, tmp_path):
        """Test staged flags, renames and mtimes."""
        (tmp_path / "new.py").write_text("x")
        output = " M src/a.py\nM  staged.py\n?? new.py\nR  old.py -> renamed.py\n\n"
        files = parse_porcelain(output, tmp_path)
        assert [(f.path, f.status, f.staged) for f in files] == [
            ("src/a.py", "M", False),
            ("staged.py", "M", True),
            ("new.py", "??", False),
            ("renamed.py", "R", True),
        ]
        assert files[2].modified_at is not None
        assert files[0].modified_at is None

    def test_find_likely_modifiers_tolerance(self):
        """Test windows are widened by the tolerance."""
        windows = {
            "%1": [ActivityWindow("%1", "claude", NOW, NOW + timedelta(seconds=10))],
            "%2": [ActivityWindow("%2", "codex", NOW + timedelta(minutes=5), NOW + timedelta(minutes=6))],
        }
        assert find_likely_modifiers(NOW + timedelta(seconds=14), windows) == ["%1"]
        assert find_likely_modifiers(NOW + timedelta(seconds=16), windows) == []
        assert find_likely_modifiers(None, windows) == []

    def test_reservation_holders_and_overlaps(self):
        """Test active holders are deduplicated and overlaps found."""
        reservations = [
            reservation("src/**", "BlueLake"),
            reservation("src/**", "BlueLake"),
            reservation("src/**", "GreenCastle"),
            reservation("docs/**", "RedFox", released=True),
        ]
        assert find_reservation_holders("src/a.py", reservations, NOW) == ["BlueLake", "GreenCastle"]
        assert find_reservation_holders("docs/a.md", reservations, NOW) == []
        assert find_reservation_overlaps(reservations, NOW) == {"src/**": ["BlueLake", "GreenCastle"]}

    @pytest.mark.parametrize(
        "modifiers,holders,names,score,reason",
        [
            (["%1", "%2"], [], None, 0.9, ConflictReason.CONCURRENT_ACTIVITY),
            (["%1"], ["Blue"], ["Green"], 0.85, ConflictReason.RESERVATION_VIOLATION),
            (["%1"], ["Blue"], ["Blue"], 0.3, ConflictReason.CONCURRENT_ACTIVITY),
            ([], ["Blue", "Green"], None, 0.75, ConflictReason.OVERLAPPING_RESERVATIONS),
            ([], [], None, 0.6, ConflictReason.UNCLAIMED_MODIFICATION),
            (["%1"], [], None, 0.4, ConflictReason.CONCURRENT_ACTIVITY),
            ([], ["Blue"], None, 0.5, ConflictReason.UNCLAIMED_MODIFICATION),
        ],
    )
    def test_score_conflict(self, modifiers, holders, names, score, reason):
        """Test the scoring table."""
        confidence, got_reason, details = score_conflict(modifiers, holders, names)
        assert confidence == score
        assert got_reason is reason
        assert details

    def test_summarize_conflicts(self):
        """Test aggregation by band and reason."""
        conflicts = [
            DetectedConflict("a", ConflictReason.CONCURRENT_ACTIVITY, 0.9),
            DetectedConflict("b", ConflictReason.RESERVATION_VIOLATION, 0.85),
            DetectedConflict("c", ConflictReason.UNCLAIMED_MODIFICATION, 0.6),
        ]
        summary = summarize_conflicts(conflicts, NOW)
        assert summary["total_conflicts"] == 3
        assert (summary["high_confidence"], summary["med_confidence"], summary["low_confidence"]) == (1, 1, 1)
        assert summary["by_reason"]["concurrent_activity"] == 1
        assert summary["timestamp"] == NOW.isoformat()


class TestConflictDetector:
    """Test suite for ConflictDetector."""

    def test_windows_sorted_and_pruned(self, frozen_clock):
        """Test windows are sorted per pane and expired ones dropped."""
        detector = ConflictDetector(clock=frozen_clock.now, retention=timedelta(minutes=10))
        now = frozen_clock.now()
        detector.record_activity("%1", "claude", now - timedelta(minutes=2), now - timedelta(minutes=1))
        detector.record_activity("%1", "claude", now - timedelta(minutes=5), now - timedelta(minutes=4))
        detector.record_activity("%2", "codex", now - timedelta(hours=1), now - timedelta(minutes=30))
        windows = detector.get_activity_windows()
        assert list(windows) == ["%1"]
        assert windows["%1"][0].start < windows["%1"][1].start
        assert detector.get_activity_windows("%2") == {}
        detector.clear_activity_windows()
        assert detector.get_activity_windows() == {}

    @pytest.mark.asyncio
    async def test_not_a_repository(self, tmp_path):
        """Test a missing repository degrades to a warning."""
        report = await ConflictDetector(tmp_path / "nope").detect_conflicts()
        assert report.conflicts == []
        assert report.warnings and "git status unavailable" in report.warnings[0]

    def test_repo_property_raises(self, tmp_path):
        """Test the repository handle reports invalid paths."""
        with pytest.raises(ToolError):
            ConflictDetector(tmp_path).repo

    @pytest.mark.asyncio
    async def test_clean_tree(self, git_repo):
        """Test a clean working tree reports nothing."""
        report = await ConflictDetector(git_repo.working_tree_dir).detect_conflicts()
        assert report.conflicts == []
        assert report.files == []

    @pytest.mark.asyncio
    async def test_unclaimed_modification(self, git_repo):
        """Test a change with no activity or reservations is unclaimed."""
        Path(git_repo.working_tree_dir, "README.md").write_text("changed\n")
        report = await ConflictDetector(git_repo.working_tree_dir).detect_conflicts()
        assert [c.path for c in report.conflicts] == ["README.md"]
        assert report.conflicts[0].reason is ConflictReason.UNCLAIMED_MODIFICATION
        assert report.conflicts[0].confidence == 0.6

    @pytest.mark.asyncio
    async def test_reservation_violation(self, git_repo):
        """Test a pane editing another agent's reserved file."""
        root = Path(git_repo.working_tree_dir)
        (root / "README.md").write_text("changed\n")
        mtime = datetime.fromtimestamp((root / "README.md").stat().st_mtime, tz=timezone.utc)
        expires = datetime.now(timezone.utc) + timedelta(hours=1)
        source = AsyncMock(return_value=[Reservation("*.md", "BlueLake", expires)])

        detector = ConflictDetector(root, reservation_source=source)
        detector.record_activity("%1", "claude", mtime - timedelta(seconds=30), mtime + timedelta(seconds=1))
        detector.set_agent_name("%1", "GreenCastle")
        report = await detector.detect_conflicts()

        conflict = report.conflicts[0]
        assert conflict.reason is ConflictReason.RESERVATION_VIOLATION
        assert conflict.likely_modifiers == ["%1"]
        assert conflict.reservation_holders == ["BlueLake"]
        assert conflict.git_status == "M"

    @pytest.mark.asyncio
    async def test_min_confidence_filters(self, git_repo):
        """Test low-scoring files are dropped unless the floor is lowered."""
        root = Path(git_repo.working_tree_dir)
        (root / "README.md").write_text("changed\n")
        mtime = datetime.fromtimestamp((root / "README.md").stat().st_mtime, tz=timezone.utc)
        detector = ConflictDetector(root)
        detector.record_activity("%1", "claude", mtime - timedelta(seconds=5), mtime + timedelta(seconds=5))
        assert (await detector.detect_conflicts()).conflicts == []
        report = await detector.detect_conflicts(min_confidence=0.0)
        assert report.conflicts[0].confidence == 0.4

    @pytest.mark.asyncio
    async def test_reservation_source_failure(self, git_repo):
        """Test reservation lookup errors become warnings."""
        Path(git_repo.working_tree_dir, "README.md").write_text("changed\n")
        source = AsyncMock(side_effect=ToolError("agent mail down"))
        report = await ConflictDetector(git_repo.working_tree_dir, source).detect_conflicts()
        assert report.warnings == ["reservations unavailable: agent mail down"]
        assert len(report.conflicts) == 1

    @pytest.mark.asyncio
    async def test_correlate_changes(self, git_repo):
        """Test file changes are attributed to active panes."""
        root = Path(git_repo.working_tree_dir)
        (root / "new.py").write_text("print(1)\n")
        mtime = datetime.fromtimestamp((root / "new.py").stat().st_mtime, tz=timezone.utc)
        detector = ConflictDetector(root)
        detector.record_activity("%2", "codex", mtime - timedelta(seconds=2), mtime)
        files = await detector.get_git_status()
        changes = detector.correlate_changes("proj", files)
        assert changes[0].path == "new.py"
        assert changes[0].change_kind is ChangeKind.CREATE
        assert changes[0].agents == ["%2"]
        assert changes[0].to_dict()["session"] == "proj"
