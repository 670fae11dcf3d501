import shlex
import subprocess
from dataclasses import dataclass

from harvester.logging.logger import Log
from harvester.processor.exceptions import RendererError


@dataclass(frozen=True)
class RendererResult:
    """Outcome of one renderer invocation."""

    exit_code: int | None
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False


class RendererInvoker:
    """Runs the external book renderer as a blocking subprocess."""

    def __init__(self, command: str) -> None:
        self._command = shlex.split(command)

    def run(self, arguments: list[str], timeout_seconds: int) -> RendererResult:
        argv = [*self._command, *arguments]
        Log.debug(f"Running renderer: {shlex.join(argv)}")
        try:
            completed = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=timeout_seconds,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            return RendererResult(
                exit_code=None,
                stdout=_as_text(exc.stdout),
                stderr=_as_text(exc.stderr),
                timed_out=True,
            )
        except OSError as exc:
            raise RendererError(f"Could not start renderer {self._command[0]}: {exc}") from exc
        return RendererResult(completed.returncode, completed.stdout, completed.stderr)


def _as_text(output: str | bytes | None) -> str:
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode("utf-8", errors="replace")
    return output
