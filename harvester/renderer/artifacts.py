import re
from dataclasses import dataclass, field
from enum import IntFlag
from pathlib import Path


class CreateArtifactsExitCode(IntFlag):
    """Bits of the renderer's createArtifacts exit code."""

    SUCCESS = 0
    UNHANDLED_EXCEPTION = 1
    BOOK_HTML_NOT_FOUND = 2
    EPUB_ERROR = 4
    BLOOM_SOURCE_ERROR = 8
    JSON_TEXTS_ERROR = 16
    THUMBNAIL_ERROR = 32
    FONT_PROBLEMS = 64


def describe_exit_code(exit_code: int) -> list[str]:
    """Names of the failure bits set in an exit code."""
    names = [flag.name for flag in CreateArtifactsExitCode if flag and exit_code & flag]
    unknown = exit_code & ~sum(CreateArtifactsExitCode)
    if unknown:
        names.append(f"Unknown({unknown})")
    return names


@dataclass
class ArtifactPaths:
    """Where the renderer writes each artifact kind for one book."""

    work_dir: Path
    bloompub: Path | None = None
    bloom_digital: Path | None = None
    epub: Path | None = None
    bloom_source: Path | None = None
    json_texts: Path | None = None
    thumbnail_info: Path | None = None
    problem_fonts: Path = field(init=False)

    def __post_init__(self) -> None:
        self.problem_fonts = self.work_dir / "problemFonts.txt"

    @classmethod
    def for_book(
        cls,
        work_dir: Path,
        file_stem: str,
        bloom_digital: bool = True,
        epub: bool = True,
        bloom_source: bool = True,
        json_texts: bool = True,
        thumbnails: bool = True,
    ) -> "ArtifactPaths":
        return cls(
            work_dir=work_dir,
            bloompub=work_dir / f"{file_stem}.bloompub" if bloom_digital else None,
            bloom_digital=work_dir / "bloomdigital" if bloom_digital else None,
            epub=work_dir / "epub" / f"{file_stem}.epub" if epub else None,
            bloom_source=work_dir / f"{file_stem}.bloomSource" if bloom_source else None,
            json_texts=work_dir / f"{file_stem}.json" if json_texts else None,
            thumbnail_info=work_dir / "thumbInfo.txt" if thumbnails else None,
        )


def create_artifacts_arguments(
    book_dir: Path,
    collection_path: Path,
    paths: ArtifactPaths,
    testing: bool = False,
) -> list[str]:
    """Command-line arguments for the renderer's createArtifacts verb."""
    args = [
        "createArtifacts",
        f"--bookPath={book_dir}",
        f"--collectionPath={collection_path}",
    ]
    if paths.bloompub is not None and paths.bloom_digital is not None:
        args.append(f"--bloomdOutputPath={paths.bloompub}")
        args.append(f"--bloomDigitalOutputPath={paths.bloom_digital}")
    if paths.epub is not None:
        args.append(f"--epubOutputPath={paths.epub}")
    if paths.bloom_source is not None:
        args.append(f"--bloomSourceOutputPath={paths.bloom_source}")
    if paths.json_texts is not None:
        args.append(f"--jsonTextsOutputPath={paths.json_texts}")
    if paths.thumbnail_info is not None:
        args.append(f"--thumbnailOutputInfoPath={paths.thumbnail_info}")
    args.append(f"--problemFontsPath={paths.problem_fonts}")
    if testing:
        args.append("--testing")
    return args


@dataclass(frozen=True)
class FontProblems:
    missing: list[str]
    invalid: list[str]

    def __bool__(self) -> bool:
        return bool(self.missing or self.invalid)


_FONT_PROBLEM_LINE = re.compile(r"^(missing|invalid|illegal) font - (.+)$")


def read_problem_fonts(path: Path) -> FontProblems:
    """Parse the renderer's problem-fonts report, one "<kind> font - <name>" per line."""
    missing: list[str] = []
    invalid: list[str] = []
    if not path.is_file():
        return FontProblems(missing, invalid)
    for line in path.read_text(encoding="utf-8").splitlines():
        match = _FONT_PROBLEM_LINE.match(line.strip())
        if match is None:
            continue
        name = match.group(2).strip()
        target = missing if match.group(1) == "missing" else invalid
        if name and name not in target:
            target.append(name)
    return FontProblems(missing, invalid)


_INCOMPLETE_UPLOAD = re.compile(r"Incomplete upload: missing (?P<what>[^\r\n]+)")


def find_incomplete_upload(stderr: str) -> str | None:
    """What the renderer reported missing from the upload, if it did."""
    match = _INCOMPLETE_UPLOAD.search(stderr or "")
    return match.group("what").strip() if match else None
