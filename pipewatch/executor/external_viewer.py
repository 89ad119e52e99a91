"""
External Viewer
===============
Hands the current transcript to the operator's editor or pager.

The text is written to ``<tmp>/pipewatch_logs_<unix-ts>.txt`` and the
command is run in the foreground with the file as its last argument. The
caller is responsible for giving up the terminal first (the Textual app
wraps these calls in ``App.suspend()``).

Commands come from ``resolve_editor``/``resolve_pager`` and may carry
arguments (``"code --wait"``, ``"less -R"``); they are split with shlex.
"""
import logging
import os
import shlex
import subprocess
import tempfile
import time
from dataclasses import dataclass
from typing import Optional

from pipewatch.core.config import ConsoleSettings, resolve_editor, resolve_pager
from pipewatch.core.errors import PipewatchError

logger = logging.getLogger(__name__)


class ViewerError(PipewatchError):
    kind = "viewer"


@dataclass
class ViewerResult:
    """Outcome of one editor/pager invocation."""
    command: str
    path: str
    returncode: int


def write_transcript(content: str, directory: Optional[str] = None) -> str:
    """Write ``content`` to a fresh temp file and return its path."""
    directory = directory or tempfile.gettempdir()
    path = os.path.join(directory, f"pipewatch_logs_{int(time.time())}.txt")
    try:
        with open(path, "w", encoding="utf-8") as fh:
            fh.write(content)
    except OSError as e:
        raise ViewerError(f"Could not write temp file {path}: {e}") from e
    return path


def _launch(command: str, content: str, keep_file: bool, directory: Optional[str]) -> ViewerResult:
    argv = shlex.split(command)
    if not argv:
        raise ViewerError("Empty viewer command")
    path = write_transcript(content, directory)
    logger.info("Opening transcript with %s", argv[0])
    try:
        completed = subprocess.run(argv + [path], check=False)
    except OSError as e:
        raise ViewerError(f"Failed to launch '{argv[0]}': {e}") from e
    finally:
        if not keep_file:
            try:
                os.remove(path)
            except OSError:
                logger.debug("Temp file %s already gone", path)
    if completed.returncode != 0:
        logger.warning("%s exited with status %d", argv[0], completed.returncode)
    return ViewerResult(command=command, path=path, returncode=completed.returncode)


def open_in_editor(
    content: str,
    settings: Optional[ConsoleSettings] = None,
    directory: Optional[str] = None,
) -> ViewerResult:
    """Open ``content`` in the editor; the temp file is kept so edits survive."""
    return _launch(resolve_editor(settings), content, keep_file=True, directory=directory)


def open_in_pager(
    content: str,
    settings: Optional[ConsoleSettings] = None,
    directory: Optional[str] = None,
) -> ViewerResult:
    """Page through ``content``; the temp file is removed afterwards."""
    return _launch(resolve_pager(settings), content, keep_file=False, directory=directory)
