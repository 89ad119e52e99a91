import os
from unittest.mock import MagicMock, patch

import pytest

from pipewatch.core.config import ConsoleSettings
from pipewatch.executor.external_viewer import ViewerError, open_in_editor, open_in_pager, write_transcript


def test_write_transcript(tmp_path):
    path = write_transcript("hello\n", str(tmp_path))
    assert os.path.basename(path).startswith("pipewatch_logs_")
    assert path.endswith(".txt")
    with open(path, encoding="utf-8") as fh:
        assert fh.read() == "hello\n"


def test_editor_keeps_file(tmp_path):
    with patch("pipewatch.executor.external_viewer.subprocess.run", return_value=MagicMock(returncode=0)) as mock_run:
        result = open_in_editor("log text", ConsoleSettings(editor="code --wait"), directory=str(tmp_path))

    argv = mock_run.call_args[0][0]
    assert argv[:2] == ["code", "--wait"]
    assert argv[2] == result.path
    assert os.path.exists(result.path)
    assert result.returncode == 0


def test_pager_removes_file(tmp_path):
    with patch("pipewatch.executor.external_viewer.subprocess.run", return_value=MagicMock(returncode=1)) as mock_run:
        result = open_in_pager("log text", ConsoleSettings(pager="less -R"), directory=str(tmp_path))

    assert mock_run.call_args[0][0][:2] == ["less", "-R"]
    assert not os.path.exists(result.path)
    assert result.returncode == 1


def test_missing_command_raises_viewer_error(tmp_path):
    with patch("pipewatch.executor.external_viewer.subprocess.run", side_effect=FileNotFoundError("nope")):
        with pytest.raises(ViewerError, match="Failed to launch 'no-such-editor'"):
            open_in_editor("x", ConsoleSettings(editor="no-such-editor"), directory=str(tmp_path))
