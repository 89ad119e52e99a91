"""Modal screens for the pipewatch console."""

from typing import Dict, Optional

from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import Button, Input, Label, Static


class RunPipelineModal(ModalScreen[Optional[str]]):
    """Confirm a pipeline run and pick the branch.

    Dismisses with the branch to run (possibly empty, meaning "keep each
    repository's last branch") or None when cancelled.
    """

    BINDINGS = [  # noqa: RUF012 - Textual pattern
        Binding("escape", "cancel", "Cancel"),
    ]

    CSS = """
    RunPipelineModal {
        align: center middle;
    }

    #run-dialog {
        width: 70%;
        max-width: 100;
        height: auto;
        border: solid $primary;
        background: $surface;
        padding: 1 2;
    }

    #run-repos {
        margin-bottom: 1;
        color: $text-muted;
    }

    #run-buttons {
        height: auto;
        align-horizontal: right;
    }
    """

    def __init__(self, pipeline_name: str, repositories: Dict[str, str]) -> None:
        super().__init__()
        self.pipeline_name = pipeline_name
        self.repositories = repositories

    def compose(self) -> ComposeResult:
        default_branch = next(iter(self.repositories.values()), "")
        repos = "\n".join(f"{repo} ({branch})" for repo, branch in self.repositories.items())
        with Vertical(id="run-dialog"):
            yield Label(f"Run Pipeline: {self.pipeline_name}")
            yield Static(repos or "No repositories found in the latest run.", id="run-repos")
            yield Input(value=default_branch, placeholder="branch", id="run-branch")
            with Horizontal(id="run-buttons"):
                yield Button("Run", variant="primary", id="run-confirm")
                yield Button("Cancel", id="run-cancel")

    def on_mount(self) -> None:
        self.query_one("#run-branch", Input).focus()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        self.dismiss(event.value.strip())

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "run-confirm":
            self.dismiss(self.query_one("#run-branch", Input).value.strip())
        else:
            self.dismiss(None)

    def action_cancel(self) -> None:
        self.dismiss(None)
