from datetime import date

import pytest

import main
from config import settings as config_settings
from config.settings import Settings
from jira_utils import TransportError
from tickets.models import ExportResult


def _settings(**kwargs):
    values = dict(jira_url="https://jira.example.com", jira_api_token="env-token", export_dir="exports")
    values.update(kwargs)
    return Settings(**values)


def test_ticket_command_builds_single_ticket_request():
    args = main.build_parser().parse_args(["ticket", "PROJ-1"])
    request = main.build_request(args, _settings())

    assert request.is_single_ticket
    assert request.ticket_key == "PROJ-1"
    assert request.token == "env-token"
    assert request.export_dir == "exports"
    assert request.search_filter is None


def test_range_command_builds_filter():
    args = main.build_parser().parse_args([
        "--token", "cli-token", "--export-dir", "out", "--update-existing", "--debug",
        "range", "--start", "2024-01-01", "--end", "2024-01-31",
        "-a", "Jane Doe", "-p", "PROJ", "-t", "Bug", "Issue Investigation",
    ])
    request = main.build_request(args, _settings())

    assert not request.is_single_ticket
    assert request.token == "cli-token"
    assert request.export_dir == "out"
    assert request.update_existing is True
    assert request.debug is True
    assert request.search_filter.start_date == date(2024, 1, 1)
    assert request.search_filter.end_date == date(2024, 1, 31)
    assert request.search_filter.assignee == "Jane Doe"
    assert request.search_filter.project == "PROJ"
    assert request.search_filter.issue_types == ("Bug", "Issue Investigation")


def test_invalid_date_rejected():
    with pytest.raises(SystemExit):
        main.build_parser().parse_args(["range", "--start", "2024-13-01", "--end", "2024-12-31"])


def test_missing_token_is_configuration_error():
    args = main.build_parser().parse_args(["ticket", "PROJ-1"])
    with pytest.raises(ValueError) as excinfo:
        main.build_request(args, _settings(jira_api_token=None))
    assert "JIRA_API_TOKEN" in str(excinfo.value)


def test_main_success_exit_code(monkeypatch, capsys, tmp_path):
    monkeypatch.setattr(main, "get_settings", lambda reload=False: _settings(log_file=str(tmp_path / "export.log")))
    monkeypatch.setattr(main, "run_export",
                        lambda request, settings: ExportResult("out/ticket_PROJ-1.xlsx", 1, "Exported ticket to: x"))

    with pytest.raises(SystemExit) as excinfo:
        main.main(["ticket", "PROJ-1"])

    assert excinfo.value.code == 0
    assert "Exported ticket to: x" in capsys.readouterr().out


def test_main_reports_transport_error(monkeypatch, capsys, tmp_path):
    def fail(request, settings):
        raise TransportError("Failed to fetch ticket (401): Unauthorized", status_code=401)

    monkeypatch.setattr(main, "get_settings", lambda reload=False: _settings(log_file=str(tmp_path / "export.log")))
    monkeypatch.setattr(main, "run_export", fail)

    with pytest.raises(SystemExit) as excinfo:
        main.main(["ticket", "PROJ-1"])

    assert excinfo.value.code == 1
    assert "ERROR: Jira request failed: Failed to fetch ticket (401)" in capsys.readouterr().out


def test_missing_jira_url_is_configuration_error(monkeypatch):
    monkeypatch.delenv("JIRA_URL", raising=False)
    monkeypatch.setenv("JIRA_API_TOKEN", "env-token")
    settings = Settings.from_env()
    args = main.build_parser().parse_args(["--token", "t", "ticket", "PROJ-1"])

    assert settings.jira_url is None
    with pytest.raises(ValueError) as excinfo:
        main.build_request(args, settings)
    assert "JIRA_URL is required" in str(excinfo.value)


def test_jira_url_option_satisfies_missing_setting():
    args = main.build_parser().parse_args(["--jira-url", "https://jira.corp.test", "ticket", "PROJ-1"])
    request = main.build_request(args, _settings(jira_url=None))
    assert request.base_url == "https://jira.corp.test"


def test_zero_page_size_rejected():
    args = main.build_parser().parse_args(["range", "--start", "2024-01-01", "--end", "2024-01-31"])
    with pytest.raises(ValueError) as excinfo:
        main.build_request(args, _settings(jira_page_size=0))
    assert "JIRA_PAGE_SIZE" in str(excinfo.value)


def test_main_rejects_bad_page_size_before_exporting(monkeypatch, capsys, tmp_path):
    calls = []
    monkeypatch.setattr(main, "get_settings",
                        lambda reload=False: _settings(jira_page_size=0, log_file=str(tmp_path / "export.log")))
    monkeypatch.setattr(main, "run_export", lambda request, settings: calls.append(request))

    with pytest.raises(SystemExit) as excinfo:
        main.main(["range", "--start", "2024-01-01", "--end", "2024-01-31"])

    assert excinfo.value.code == 1
    assert calls == []
    assert "JIRA_PAGE_SIZE must be a positive integer" in capsys.readouterr().out


def test_log_file_from_env_file(monkeypatch, tmp_path):
    log_path = tmp_path / "from_env.log"
    env_file = tmp_path / "export.env"
    env_file.write_text(
        "JIRA_URL=https://jira.corp.test\n"
        "JIRA_API_TOKEN=file-token\n"
        f"LOG_FILE={log_path}\n"
    )
    for name in ("JIRA_URL", "JIRA_API_TOKEN", "LOG_FILE"):
        monkeypatch.setenv(name, "placeholder")
    monkeypatch.setattr(config_settings, "_settings", None)
    seen = []

    def export(request, settings):
        seen.append(request)
        return ExportResult(None, 0, "No tickets found for the selected date range.")

    monkeypatch.setattr(main, "run_export", export)

    with pytest.raises(SystemExit) as excinfo:
        main.main(["--env", str(env_file), "ticket", "PROJ-1"])

    assert excinfo.value.code == 0
    assert seen[0].token == "file-token"
    assert seen[0].base_url == "https://jira.corp.test"
    assert "OUTPUT: No tickets found" in log_path.read_text()


def test_repeated_main_keeps_one_handler_pair(monkeypatch, capsys, tmp_path):
    monkeypatch.setattr(main, "get_settings", lambda reload=False: _settings(log_file=str(tmp_path / "export.log")))
    monkeypatch.setattr(main, "run_export",
                        lambda request, settings: ExportResult("x.xlsx", 1, "Exported ticket to: x"))

    for _ in range(3):
        with pytest.raises(SystemExit):
            main.main(["ticket", "PROJ-1"])
        out = capsys.readouterr().out

    assert len(main.log.handlers) == 2
    assert out.count("Command: ticket") == 1
