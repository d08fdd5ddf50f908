"""Test configuration ensuring local module import when editable install not active.

If users invoke `pytest` outside the project's virtualenv, we still add the project
root to sys.path so `import jira_utils` works.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def make_issue(key, summary="Something broke", status="Open", issuetype="Bug",
               created="2024-01-15T10:22:33.000+0000", **extra_fields):
    fields = {
        "summary": summary,
        "status": {"name": status},
        "issuetype": {"name": issuetype},
        "created": created,
    }
    fields.update(extra_fields)
    return {"key": key, "fields": fields}


@pytest.fixture
def issue_factory():
    return make_issue


class FakeSearchClient:
    """Stands in for JiraApiClient.search(), serving pre-built pages."""

    def __init__(self, pages, total):
        self.pages = list(pages)
        self.total = total
        self.calls = []

    def search(self, jql, start_at, max_results, fields):
        self.calls.append({"jql": jql, "start_at": start_at, "max_results": max_results, "fields": fields})
        page = self.pages.pop(0) if self.pages else []
        return json.dumps({"startAt": start_at, "maxResults": max_results, "total": self.total, "issues": page})


@pytest.fixture
def fake_search_client():
    return FakeSearchClient
