from unittest.mock import MagicMock, patch

from harvester.issues.reporter import LogIssueReporter


class TestLogIssueReporter:
    @patch("harvester.issues.reporter.Log")
    def test_logs_summary_details_and_exception(self, mock_log: MagicMock) -> None:
        LogIssueReporter().report_error("Render failed", "stderr text", "book1", ValueError("bad"))

        text = mock_log.error.call_args.args[0]
        assert text.startswith("ISSUE (book book1): Render failed")
        assert "stderr text" in text
        assert "ValueError: bad" in text

    @patch("harvester.issues.reporter.Log")
    def test_disabled_reporter_is_silent(self, mock_log: MagicMock) -> None:
        LogIssueReporter(disabled=True).report_missing_font("Andika", "book1")

        mock_log.error.assert_not_called()

    @patch("harvester.issues.reporter.Log")
    def test_font_reports(self, mock_log: MagicMock) -> None:
        reporter = LogIssueReporter()

        reporter.report_missing_font("Andika", "book1")
        reporter.report_invalid_font("Broken", "book2")

        first, second = (call.args[0] for call in mock_log.error.call_args_list)
        assert "Missing font Andika" in first
        assert "Invalid font Broken" in second
