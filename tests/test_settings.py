import pytest

from config.settings import DEFAULT_CUSTOM_FIELD_1, Settings, get_settings


def test_from_env(monkeypatch):
    monkeypatch.setenv("JIRA_URL", "https://jira.corp.test")
    monkeypatch.setenv("JIRA_API_TOKEN", "abc")
    monkeypatch.setenv("JIRA_DEBUG", "yes")
    monkeypatch.setenv("JIRA_READ_TIMEOUT", "12.5")
    monkeypatch.setenv("JIRA_PAGE_SIZE", "250")
    monkeypatch.setenv("JIRA_CUSTOM_FIELD_2", "customfield_99")
    monkeypatch.setenv("JIRA_CUSTOM_FIELD_2_LABEL", "Release")
    monkeypatch.delenv("JIRA_CUSTOM_FIELD_1", raising=False)
    monkeypatch.delenv("JIRA_CUSTOM_FIELD_1_LABEL", raising=False)

    settings = Settings.from_env()

    assert settings.jira_url == "https://jira.corp.test"
    assert settings.jira_debug is True
    assert settings.jira_read_timeout == 12.5
    assert settings.jira_page_size == 250
    assert settings.custom_fields == (
        (DEFAULT_CUSTOM_FIELD_1, "Custom Field 1"),
        ("customfield_99", "Release"),
    )


def test_validate_lists_every_problem():
    settings = Settings(jira_url="", jira_api_token=None, jira_page_size=0)
    with pytest.raises(ValueError) as excinfo:
        settings.validate()
    message = str(excinfo.value)
    assert "JIRA_URL is required" in message
    assert "JIRA_API_TOKEN is required" in message
    assert "JIRA_PAGE_SIZE" in message


def test_validate_ok():
    assert Settings(jira_url="https://jira.corp.test", jira_api_token="tok").validate() is True


def test_to_dict_masks_token():
    assert Settings(jira_api_token="secret").to_dict()["jira_api_token"] == "***"
    assert Settings().to_dict()["jira_api_token"] is None


def test_get_settings_reload(monkeypatch):
    monkeypatch.setenv("JIRA_EXPORT_DIR", "first")
    assert get_settings(reload=True).export_dir == "first"
    monkeypatch.setenv("JIRA_EXPORT_DIR", "second")
    assert get_settings().export_dir == "first"
    assert get_settings(reload=True).export_dir == "second"
