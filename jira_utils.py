##########################################################################################
#
# Script name: jira_utils.py
#
# Description: Jira REST (api/2) access for the ticket exporter: JQL construction,
#              the bearer token HTTP client and paginated search aggregation.
#
# Author: John Macdonald
#
# Credentials:
#   This module uses a Jira personal access token (bearer authentication). To set up:
#   1. Create a personal access token from your Jira profile page.
#   2. Set environment variables (or put them in a .env file):
#      export JIRA_URL="https://jira.example.com"
#      export JIRA_API_TOKEN="your_personal_access_token"
#
#   NEVER commit credentials to version control.
#
##########################################################################################

import json
import logging
import os
import sys
from datetime import date
from urllib.parse import quote

import requests

from tickets.models import ALL_PROJECTS, AggregatedResult

# ****************************************************************************************
# Global data and configuration
# ****************************************************************************************

# Logging config
log = logging.getLogger(os.path.basename(sys.argv[0]))

API_PATH = 'rest/api/2/'
USER_AGENT = 'JiraTicketExporter/1.0'

# Connect timeout is fixed; the read timeout is configurable (JIRA_READ_TIMEOUT)
CONNECT_TIMEOUT = 10
DEFAULT_READ_TIMEOUT = 60.0

DEFAULT_PAGE_SIZE = 1000

DEFAULT_SEARCH_FIELDS = [
    'summary',
    'status',
    'assignee',
    'issuetype',
    'resolutiondate',
    'created',
    'priority',
    'customfield_27101',
    'customfield_10704',
    'issuelinks',
]

# Characters of a response body quoted in error messages
CONTENT_TYPE_SNIPPET = 500
BODY_SNIPPET = 100


# ****************************************************************************************
# Exceptions
# ****************************************************************************************

class Error(Exception):
    '''
    Base class for exceptions in this module.
    '''
    pass

class TransportError(Error):
    '''
    Exception raised when a Jira request fails or returns an unusable response.

    Attributes:
        status_code: HTTP status, or None when no response was received.
        body: Response body (possibly truncated), or None.
    '''
    def __init__(self, message, status_code=None, body=None):
        self.status_code = status_code
        self.body = body
        self.message = f'Jira request failed: {message}'
        super().__init__(self.message)


# ****************************************************************************************
# Query builder
# ****************************************************************************************

def _escape(value):
    return str(value).replace("'", "\\'")


def _render_date(value):
    if isinstance(value, date):
        return value.strftime('%Y-%m-%d')
    return str(value)


def build_jql(start_date, end_date, assignee=None, project=None, issue_types=None):
    '''
    Build the JQL for tickets created OR resolved within a date range.

    Input:
        start_date: First day (date or YYYY-MM-DD string), inclusive.
        end_date: Last day (date or YYYY-MM-DD string), inclusive.
        assignee: Optional exact assignee; ignored when blank.
        project: Optional project key; ignored when blank or "All Projects".
        issue_types: Optional list of issue type names; ignored when empty.

    Output:
        Unencoded JQL string. Single quotes inside literals are escaped as \\'.
    '''
    start = _render_date(start_date)
    end = _render_date(end_date)

    jql = (f'((created >= {start} AND created <= {end}) OR '
           f'(resolutiondate >= {start} AND resolutiondate <= {end}))')

    if project is not None and project.strip() and project != ALL_PROJECTS:
        jql += f" AND project = '{_escape(project)}'"

    if assignee is not None and assignee.strip():
        jql += f" AND assignee = '{_escape(assignee)}'"

    if issue_types:
        type_list = ', '.join(f"'{_escape(t)}'" for t in issue_types)
        jql += f' AND issuetype IN ({type_list})'

    log.debug(f'JQL query: {jql}')
    return jql


def build_jql_from_filter(search_filter):
    '''Build the JQL for a tickets.models.SearchFilter.'''
    return build_jql(
        search_filter.start_date,
        search_filter.end_date,
        assignee=search_filter.assignee,
        project=search_filter.project,
        issue_types=list(search_filter.issue_types),
    )


# ****************************************************************************************
# Transport client
# ****************************************************************************************

class JiraApiClient:
    '''
    Minimal Jira REST client using bearer token authentication.

    Each call is an independent requests.get(); nothing but configuration is
    kept between calls. In debug (diagnostic) mode redirects are not followed
    and every request/response is logged.
    '''

    def __init__(self, base_url, token, debug=False, read_timeout=DEFAULT_READ_TIMEOUT):
        self.base_url = base_url.rstrip('/') + '/'
        self.token = token
        self.debug = debug
        self.timeout = (CONNECT_TIMEOUT, read_timeout)

    @property
    def api_url(self):
        return f'{self.base_url}{API_PATH}'

    def _headers(self):
        return {
            'Accept': 'application/json',
            'Authorization': f'Bearer {self.token}',
            'User-Agent': USER_AGENT,
        }

    def _log_request(self, url, headers, params=None):
        if not self.debug:
            return
        masked = dict(headers)
        masked['Authorization'] = 'Bearer ***'
        log.info('=== Jira API Request ===')
        log.info(f'GET {url}')
        if params:
            log.info(f'Params: {params}')
        log.info(f'Headers: {masked}')

    def _log_response(self, response):
        if not self.debug:
            return
        log.info('=== Jira API Response ===')
        log.info(f'URL: {getattr(response, "url", "")}')
        log.info(f'Status: {response.status_code}')
        for name, value in response.headers.items():
            log.info(f'{name}: {value}')
        if 300 <= response.status_code < 400:
            log.warning(f'Redirect detected to: {response.headers.get("Location", "<none>")}')

    def _get(self, url, params=None):
        headers = self._headers()
        self._log_request(url, headers, params)
        try:
            response = requests.get(
                url,
                headers=headers,
                params=params,
                timeout=self.timeout,
                allow_redirects=not self.debug,
            )
        except requests.RequestException as e:
            log.error(f'GET {url} failed: {e}')
            raise TransportError(f'GET {url} failed: {e}') from e
        self._log_response(response)
        return response

    def fetch_issue(self, issue_key):
        '''
        Fetch a single issue.

        Input:
            issue_key: Issue key (e.g. PROJ-123).

        Output:
            Raw JSON response body (string).

        Raises:
            TransportError: On any status other than 200 or a network failure.
        '''
        log.debug(f'Entering fetch_issue(issue_key={issue_key})')
        url = f'{self.api_url}issue/{quote(issue_key.strip(), safe="")}'
        response = self._get(url)

        if response.status_code != 200:
            raise TransportError(
                f'Failed to fetch issue {issue_key} ({response.status_code}): {response.text}',
                status_code=response.status_code,
                body=response.text,
            )
        return response.text

    def search(self, jql, start_at, max_results, fields):
        '''
        Fetch one page of search results.

        Input:
            jql: Unencoded JQL; requests encodes the query string.
            start_at: Offset of the first issue.
            max_results: Page size.
            fields: List of field names (or an already comma separated string).

        Output:
            Raw JSON response body (string).

        Raises:
            TransportError: If the status is not 200, the content type is not
                JSON or the body does not start with { or [.
        '''
        log.debug(f'Entering search(start_at={start_at}, max_results={max_results})')
        if not isinstance(fields, str):
            fields = ','.join(fields)
        params = {
            'jql': jql,
            'startAt': start_at,
            'maxResults': max_results,
            'fields': fields,
        }
        response = self._get(f'{self.api_url}search', params=params)
        body = response.text or ''

        if response.status_code != 200:
            raise TransportError(
                f'Failed to search issues ({response.status_code}): {body}',
                status_code=response.status_code,
                body=body,
            )

        content_type = response.headers.get('Content-Type', '')
        if 'application/json' not in content_type:
            raise TransportError(
                f'Expected JSON response but got: {content_type}. '
                f'Response body: {body[:CONTENT_TYPE_SNIPPET]}',
                status_code=response.status_code,
                body=body[:CONTENT_TYPE_SNIPPET],
            )

        stripped = body.strip()
        if not stripped.startswith(('{', '[')):
            raise TransportError(
                f'Response does not appear to be valid JSON. '
                f'Response body starts with: {stripped[:BODY_SNIPPET]}',
                status_code=response.status_code,
                body=stripped[:BODY_SNIPPET],
            )
        return body


def decode_json(body, context='response'):
    '''
    Decode a JSON response body.

    Raises:
        TransportError: If the body is not valid JSON.
    '''
    try:
        return json.loads(body)
    except ValueError as e:
        raise TransportError(f'Invalid JSON in {context}: {e}. Body starts with: {body[:BODY_SNIPPET]}',
                             body=body[:BODY_SNIPPET]) from e


# ****************************************************************************************
# Pagination
# ****************************************************************************************

def search_all(client, search_filter, fields=None, page_size=DEFAULT_PAGE_SIZE):
    '''
    Run a date range search and collect every page.

    Input:
        client: JiraApiClient (anything with a compatible search()).
        search_filter: tickets.models.SearchFilter.
        fields: Field names to request (default DEFAULT_SEARCH_FIELDS).
        page_size: maxResults per request.

    Output:
        tickets.models.AggregatedResult holding all collected issues. Its total
        is the local count, not the server's.

    Raises:
        TransportError: If any page fails; collected pages are discarded.
    '''
    log.debug(f'Entering search_all(filter={search_filter}, page_size={page_size})')
    jql = build_jql_from_filter(search_filter)
    fields = fields or DEFAULT_SEARCH_FIELDS

    collected = []
    start_at = 0
    page = 0

    while True:
        page += 1
        body = client.search(jql, start_at, page_size, fields)
        data = decode_json(body, f'search page {page}')

        issues = data.get('issues') if isinstance(data, dict) else None
        if not isinstance(issues, list):
            log.debug(f'No issues array in page {page}; stopping')
            break

        collected.extend(issues)
        total = data.get('total')
        log.debug(f'Fetched {len(issues)} issues in page {page}. '
                  f'Total fetched so far: {len(collected)} out of {total}')

        if len(issues) == 0:
            break
        if isinstance(total, int) and len(collected) >= total:
            break

        start_at += len(issues)

    log.info(f'Retrieved {len(collected)} issues in {page} request(s)')
    return AggregatedResult(issues=collected)
