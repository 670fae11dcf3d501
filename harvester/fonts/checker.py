import subprocess
from collections.abc import Iterable
from dataclasses import dataclass, field

from harvester.logging.logger import Log
from harvester.selection.policy import FontPresence

GENERIC_FONT_FAMILIES = frozenset(
    {
        "serif",
        "sans-serif",
        "monospace",
        "cursive",
        "fantasy",
        "system-ui",
        "ui-serif",
        "ui-sans-serif",
        "ui-monospace",
        "ui-rounded",
        "math",
        "emoji",
        "fangsong",
        "宋体",
        "黑体",
        "楷体",
    }
)


class InstalledFontSource:
    """Lists font family names available to the renderer, via fontconfig."""

    def __init__(self, command: tuple[str, ...] = ("fc-list", "--format", "%{family}\n")) -> None:
        self._command = command

    def family_names(self) -> set[str]:
        try:
            result = subprocess.run(
                self._command, capture_output=True, text=True, timeout=30, check=True
            )
        except (OSError, subprocess.SubprocessError) as exc:
            Log.warning(f"Could not list installed fonts: {exc}")
            return set()
        names: set[str] = set()
        for line in result.stdout.splitlines():
            names.update(name.strip() for name in line.split(",") if name.strip())
        return names


@dataclass
class FontProblemLedger:
    """Fonts already reported as missing or invalid by this harvester instance."""

    missing: set[str] = field(default_factory=set)
    invalid: set[str] = field(default_factory=set)

    def first_report_of_missing(self, name: str) -> bool:
        if name in self.missing:
            return False
        self.missing.add(name)
        return True

    def first_report_of_invalid(self, name: str) -> bool:
        if name in self.invalid:
            return False
        self.invalid.add(name)
        return True


class FontChecker(FontPresence):
    """Answers which of a book's fonts the renderer cannot find."""

    def __init__(self, installed: InstalledFontSource) -> None:
        self._installed = installed

    def get_missing_fonts(self, font_names: Iterable[str]) -> list[str]:
        installed = {name.lower() for name in self._installed.family_names()}
        missing: list[str] = []
        for name in font_names:
            name = name.strip()
            if not name or name.lower() in GENERIC_FONT_FAMILIES:
                continue
            if name.lower() not in installed and name not in missing:
                missing.append(name)
        return missing
