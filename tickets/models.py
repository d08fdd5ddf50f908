##########################################################################################
#
# Module: tickets/models.py
#
# Description: Data models for the ticket export pipeline.
#              Defines the normalized Ticket entity, the immutable search/export
#              request values and the aggregated search result.
#
# Author: Cornelis Networks
#
##########################################################################################

import logging
import os
import sys
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

# Logging config - follows jira_utils.py pattern
log = logging.getLogger(os.path.basename(sys.argv[0]))

# Project value meaning "do not filter by project"
ALL_PROJECTS = 'All Projects'


# ---------------------------------------------------------------------------
# Ticket Models
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LinkedIssue:
    '''
    One entry of a ticket's issue links.

    Attributes:
        key:          Key of the linked issue (e.g. PROJ-42).
        relationship: Human readable label seen from this ticket ("blocks",
                      "is blocked by", ...).
    '''
    key: str
    relationship: str

    def render(self) -> str:
        return f'{self.relationship} {self.key}'.strip()


@dataclass(frozen=True)
class Ticket:
    '''
    A Jira issue flattened into the columns of the export.

    Instances are built only by tickets.normalizer.parse_one().

    Attributes:
        key:             Issue key, unique per Jira instance.
        summary:         Issue summary line.
        status:          Status name.
        issue_type:      Issue type name.
        created:         Creation timestamp.
        assignee:        Assignee display name, None when unassigned.
        priority:        Priority name, None when not set.
        resolution_date: Resolution timestamp, None while unresolved.
        custom_1:        First business specific custom field, rendered as text.
        custom_2:        Second business specific custom field, rendered as text.
        linked_issues:   Issue links in source order (empty tuple when none).
    '''
    key: str
    summary: str
    status: str
    issue_type: str
    created: datetime
    assignee: Optional[str] = None
    priority: Optional[str] = None
    resolution_date: Optional[datetime] = None
    custom_1: Optional[str] = None
    custom_2: Optional[str] = None
    linked_issues: Tuple[LinkedIssue, ...] = ()

    def linked_issues_text(self) -> str:
        '''Render the links as one spreadsheet cell, one link per line.'''
        return '\n'.join(link.render() for link in self.linked_issues)


# ---------------------------------------------------------------------------
# Request Models
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SearchFilter:
    '''
    Filter for a date range search.

    Both dates are inclusive. start_date <= end_date is expected but not
    enforced; the query builder renders any ordering.

    Attributes:
        start_date:  First day of the range.
        end_date:    Last day of the range.
        assignee:    Exact assignee name, or None for any assignee.
        project:     Project key, None/blank or ALL_PROJECTS for any project.
        issue_types: Issue type names, empty for any type.
    '''
    start_date: date
    end_date: date
    assignee: Optional[str] = None
    project: Optional[str] = None
    issue_types: Tuple[str, ...] = ()

    @property
    def has_project(self) -> bool:
        return bool(self.project and self.project.strip() and self.project != ALL_PROJECTS)

    @property
    def has_assignee(self) -> bool:
        return bool(self.assignee and self.assignee.strip())

    @property
    def range_label(self) -> str:
        return f'{self.start_date} to {self.end_date}'

    def describe(self) -> str:
        '''Status line describing the search, e.g. for the CLI output.'''
        message = f'Searching for tickets from {self.start_date} to {self.end_date}'
        if self.has_project:
            message += f" in project '{self.project}'"
        if self.has_assignee:
            message += f" assigned to '{self.assignee}'"
        return message + '...'


@dataclass(frozen=True)
class ExportRequest:
    '''
    Everything one export action needs, built once and passed down unchanged.

    Exactly one of ticket_key / search_filter is set.
    '''
    base_url: str
    token: str
    export_dir: str
    update_existing: bool = False
    debug: bool = False
    ticket_key: Optional[str] = None
    search_filter: Optional[SearchFilter] = None

    @property
    def is_single_ticket(self) -> bool:
        return self.ticket_key is not None


# ---------------------------------------------------------------------------
# Result Models
# ---------------------------------------------------------------------------

@dataclass
class AggregatedResult:
    '''
    All pages of one search merged into a single result set.

    total is the number of locally collected issues, not the count the server
    reported.
    '''
    issues: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.issues)

    def to_envelope(self) -> Dict[str, Any]:
        '''Render as a search envelope starting at offset 0.'''
        return {
            'total': self.total,
            'startAt': 0,
            'maxResults': self.total,
            'issues': self.issues,
        }


@dataclass
class ExportResult:
    '''
    Outcome of one export action, consumed by the caller for display.

    Attributes:
        file_path:    Workbook written, None if nothing was written.
        ticket_count: Number of tickets exported.
        message:      Human readable status line.
    '''
    file_path: Optional[str]
    ticket_count: int
    message: str
