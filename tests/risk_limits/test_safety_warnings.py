"""
Safety Warning Board Tests.
"""

from datetime import datetime, timedelta, timezone

from risk_limits import SafetyWarning, SafetyWarningBoard, WarningSeverity


T0 = datetime(2024, 6, 1, tzinfo=timezone.utc)


def warning(warning_id, severity=WarningSeverity.MEDIUM, account_id="acc-1", at=T0):
    return SafetyWarning(
        account_id=account_id,
        severity=severity,
        message=f"warning {warning_id}",
        warning_id=warning_id,
        created_at=at,
    )


class TestSafetyWarningBoard:
    """Tests for the dismiss lifecycle."""

    def test_raise_is_upsert_keeping_creation_time(self):
        board = SafetyWarningBoard()
        board.raise_warning(warning("w1", at=T0))
        board.raise_warning(warning("w1", WarningSeverity.HIGH, at=T0 + timedelta(hours=1)))

        assert len(board) == 1
        stored = board.get("w1")
        assert stored.severity == WarningSeverity.HIGH
        assert stored.created_at == T0

    def test_dismiss_removes(self):
        board = SafetyWarningBoard()
        board.raise_warning(warning("w1"))

        assert board.dismiss("w1") is True
        assert "w1" not in board
        assert board.dismiss("w1") is False

    def test_resolve_removes(self):
        board = SafetyWarningBoard()
        board.raise_warning(warning("w1"))

        assert board.resolve("w1") is True
        assert board.resolve("missing") is False
        assert len(board) == 0

    def test_active_ordered_by_severity_then_age(self):
        board = SafetyWarningBoard()
        board.raise_warning(warning("low", WarningSeverity.LOW, at=T0))
        board.raise_warning(warning("new-high", WarningSeverity.HIGH, at=T0 + timedelta(minutes=5)))
        board.raise_warning(warning("old-high", WarningSeverity.HIGH, at=T0))
        board.raise_warning(warning("other", WarningSeverity.HIGH, account_id="acc-2"))

        ids = [w.warning_id for w in board.active("acc-1")]

        assert ids == ["old-high", "new-high", "low"]
        assert len(board.active()) == 4

    def test_listeners_notified(self):
        board = SafetyWarningBoard()
        events = []
        board.add_listener(lambda event, w: events.append((event, w.warning_id)))

        board.raise_warning(warning("w1"))
        board.dismiss("w1")
        board.raise_warning(warning("w2"))
        board.resolve("w2")

        assert events == [
            ("raised", "w1"),
            ("dismissed", "w1"),
            ("raised", "w2"),
            ("resolved", "w2"),
        ]

    def test_failing_listener_does_not_break_board(self):
        board = SafetyWarningBoard()

        def broken(event, w):
            raise RuntimeError("boom")

        board.add_listener(broken)
        board.raise_warning(warning("w1"))

        assert "w1" in board
