from abc import ABC, abstractmethod

from harvester.logging.logger import Log


class IssueReporter(ABC):
    """Contract for escalating harvest problems to people."""

    @abstractmethod
    def report_error(
        self,
        summary: str,
        details: str,
        book_id: str | None = None,
        exception: BaseException | None = None,
    ) -> None:
        """Escalate one problem.

        Args:
            summary: One-line description.
            details: Longer text, e.g. renderer stdout/stderr.
            book_id: Catalog id of the affected book, if any.
            exception: The exception that triggered the report, if any.
        """

    def report_missing_font(self, font_name: str, book_id: str) -> None:
        self.report_error(
            f"Missing font {font_name}", f"Font {font_name} is not installed", book_id
        )

    def report_invalid_font(self, font_name: str, book_id: str) -> None:
        self.report_error(
            f"Invalid font {font_name}", f"Font {font_name} could not be used", book_id
        )


class LogIssueReporter(IssueReporter):
    """Writes escalations to the application log; silent when disabled."""

    def __init__(self, disabled: bool = False) -> None:
        self.disabled = disabled

    def report_error(
        self,
        summary: str,
        details: str,
        book_id: str | None = None,
        exception: BaseException | None = None,
    ) -> None:
        if self.disabled:
            return
        where = f" (book {book_id})" if book_id else ""
        text = f"ISSUE{where}: {summary}"
        if details:
            text = f"{text}\n{details}"
        if exception is not None:
            text = f"{text}\n{type(exception).__name__}: {exception}"
        Log.error(text)
