import json
from datetime import date

import pytest

from jira_utils import DEFAULT_SEARCH_FIELDS, TransportError, search_all
from tickets.models import SearchFilter

FILTER = SearchFilter(start_date=date(2024, 1, 1), end_date=date(2024, 12, 31), project="PROJ")


def _issues(start, count):
    return [{"key": f"PROJ-{n}"} for n in range(start, start + count)]


def test_collects_all_pages(fake_search_client):
    client = fake_search_client(
        [_issues(0, 1000), _issues(1000, 1000), _issues(2000, 500)],
        total=2500,
    )

    result = search_all(client, FILTER)

    assert result.total == 2500
    assert len(result.issues) == 2500
    assert [c["start_at"] for c in client.calls] == [0, 1000, 2000]
    assert all(c["max_results"] == 1000 for c in client.calls)
    assert result.issues[0]["key"] == "PROJ-0"
    assert result.issues[-1]["key"] == "PROJ-2499"


def test_same_query_and_fields_each_page(fake_search_client):
    client = fake_search_client([_issues(0, 2), _issues(2, 1)], total=3)

    search_all(client, FILTER, page_size=2)

    assert len({c["jql"] for c in client.calls}) == 1
    assert "AND project = 'PROJ'" in client.calls[0]["jql"]
    assert client.calls[0]["fields"] == DEFAULT_SEARCH_FIELDS
    assert [c["start_at"] for c in client.calls] == [0, 2]


def test_empty_first_page_stops(fake_search_client):
    client = fake_search_client([[]], total=500)

    result = search_all(client, FILTER)

    assert len(client.calls) == 1
    assert result.issues == []
    assert result.total == 0


def test_short_pages_advance_by_received_count(fake_search_client):
    client = fake_search_client([_issues(0, 300), _issues(300, 300), []], total=1000)

    result = search_all(client, FILTER)

    assert [c["start_at"] for c in client.calls] == [0, 300, 600]
    assert result.total == 600


class EnvelopeClient:
    def __init__(self, bodies):
        self.bodies = list(bodies)
        self.calls = 0

    def search(self, jql, start_at, max_results, fields):
        self.calls += 1
        return self.bodies.pop(0)


def test_missing_issues_array_is_clean_end():
    client = EnvelopeClient([
        json.dumps({"total": 10, "issues": [{"key": "A-1"}]}),
        json.dumps({"total": 10}),
    ])

    result = search_all(client, FILTER, page_size=1)

    assert client.calls == 2
    assert [i["key"] for i in result.issues] == ["A-1"]


def test_issues_not_a_list_is_clean_end():
    client = EnvelopeClient([json.dumps({"total": 3, "issues": None})])
    result = search_all(client, FILTER)
    assert result.issues == []


def test_missing_total_pages_until_empty():
    client = EnvelopeClient([
        json.dumps({"issues": [{"key": "A-1"}]}),
        json.dumps({"issues": [{"key": "A-2"}]}),
        json.dumps({"issues": []}),
    ])

    result = search_all(client, FILTER, page_size=1)

    assert client.calls == 3
    assert result.total == 2


def test_envelope_reflects_local_aggregation(fake_search_client):
    client = fake_search_client([_issues(0, 2)], total=2)

    envelope = search_all(client, FILTER).to_envelope()

    assert envelope == {"total": 2, "startAt": 0, "maxResults": 2, "issues": _issues(0, 2)}


def test_page_failure_propagates():
    class FailingClient:
        def __init__(self):
            self.calls = 0

        def search(self, jql, start_at, max_results, fields):
            self.calls += 1
            if self.calls == 2:
                raise TransportError("Failed to search issues (503): unavailable", status_code=503)
            return json.dumps({"total": 5, "issues": [{"key": "A-1"}]})

    client = FailingClient()
    with pytest.raises(TransportError) as excinfo:
        search_all(client, FILTER, page_size=1)
    assert excinfo.value.status_code == 503
    assert client.calls == 2


def test_invalid_json_page_raises():
    client = EnvelopeClient(["{broken"])
    with pytest.raises(TransportError):
        search_all(client, FILTER)
