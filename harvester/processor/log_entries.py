import re
from dataclasses import dataclass
from enum import Enum


class LogLevel(str, Enum):
    INFO = "Info"
    WARN = "Warn"
    ERROR = "Error"


class LogType(str, Enum):
    """Category of a per-book harvest log entry."""

    ARTIFACT_SUITABILITY = "ArtifactSuitability"
    BLOOM_CLI_ERROR = "BloomCLIError"
    MISSING_BASE_URL = "MissingBaseUrl"
    MISSING_BLOOM_DIGITAL_INDEX = "MissingBloomDigitalIndex"
    MISSING_FONT = "MissingFont"
    INVALID_FONT = "InvalidFont"
    PHASH_ERROR = "PHashError"
    PROCESS_BOOK_ERROR = "ProcessBookError"
    TIMEOUT_ERROR = "TimeoutError"


_ENTRY_PATTERN = re.compile(r"^(?P<level>\w+): (?P<type>\w+) - (?P<message>.*)$", re.DOTALL)


@dataclass(frozen=True)
class LogEntry:
    """One leveled, categorized message stored in a book's harvest log."""

    level: LogLevel
    type: LogType
    message: str

    def __str__(self) -> str:
        return f"{self.level.value}: {self.type.value} - {self.message}"

    @classmethod
    def parse(cls, text: str) -> "LogEntry | None":
        """Parse a stored entry; returns None for text in any other shape."""
        match = _ENTRY_PATTERN.match(text)
        if match is None:
            return None
        try:
            return cls(LogLevel(match["level"]), LogType(match["type"]), match["message"])
        except ValueError:
            return None


def missing_fonts(stored_entries: list[str]) -> list[str]:
    """Font names recorded as missing in a book's stored harvest log."""
    names: list[str] = []
    for text in stored_entries:
        entry = LogEntry.parse(text)
        if entry is not None and entry.type is LogType.MISSING_FONT:
            names.append(entry.message)
    return names
