from unittest.mock import AsyncMock, patch

from typer.testing import CliRunner

from pipewatch.cli import app
from pipewatch.core.errors import TransportError
from pipewatch.models.page import Page
from tests.conftest import make_pipeline

runner = CliRunner()


def _config(tmp_path, org="5f00aa", token="pt-123"):
    path = tmp_path / "pipewatch.yml"
    path.write_text(f"organization_id: '{org}'\npersonal_access_token: '{token}'\n", encoding="utf-8")
    return str(path)


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert "pipewatch version" in result.output


def test_check_lists_first_page(tmp_path):
    page = Page([make_pipeline("1", "api-build", last_run_status="SUCCESS")], 1, 30)
    with patch("pipewatch.cli.PipelineGateway.list_pipelines", new_callable=AsyncMock, return_value=page):
        result = runner.invoke(app, ["check", "--config", _config(tmp_path)])

    assert result.exit_code == 0, result.output
    assert "api-build" in result.output
    assert "1 pipelines on page 1" in result.output


def test_check_reports_missing_organization(tmp_path):
    result = runner.invoke(app, ["check", "--config", _config(tmp_path, org="")])
    assert result.exit_code == 1


def test_check_reports_gateway_failure(tmp_path):
    with patch("pipewatch.cli.PipelineGateway.list_pipelines", new_callable=AsyncMock,
               side_effect=TransportError("connection refused")):
        result = runner.invoke(app, ["check", "--config", _config(tmp_path)])

    assert result.exit_code == 1
