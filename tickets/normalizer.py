##########################################################################################
#
# Module: tickets/normalizer.py
#
# Description: Converts raw Jira issue JSON (REST api/2) into Ticket objects.
#              Extraction is driven by a field table marking every column as
#              required or optional.
#
# Author: Cornelis Networks
#
##########################################################################################

import logging
import os
import sys
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from config.settings import DEFAULT_CUSTOM_FIELD_1, DEFAULT_CUSTOM_FIELD_2
from tickets.models import LinkedIssue, Ticket

# Logging config - follows jira_utils.py pattern
log = logging.getLogger(os.path.basename(sys.argv[0]))

DEFAULT_CUSTOM_FIELDS = (DEFAULT_CUSTOM_FIELD_1, DEFAULT_CUSTOM_FIELD_2)

_JIRA_DATE_FORMATS = (
    '%Y-%m-%dT%H:%M:%S.%f%z',   # 2024-03-01T09:15:02.000+0000
    '%Y-%m-%dT%H:%M:%S%z',
    '%Y-%m-%dT%H:%M:%S.%f',
    '%Y-%m-%dT%H:%M:%S',
    '%Y-%m-%d',
)


# ****************************************************************************************
# Exceptions
# ****************************************************************************************

class Error(Exception):
    '''
    Base class for exceptions in this module.
    '''
    pass

class MalformedRecordError(Error):
    '''
    Exception raised when a required field is missing from an issue record.
    '''
    def __init__(self, field, key=None, detail='missing'):
        self.field = field
        self.key = key
        record = key if key else '<unknown key>'
        self.message = f'Malformed issue record {record}: required field "{field}" {detail}'
        super().__init__(self.message)


# ****************************************************************************************
# Value converters
# ****************************************************************************************

def parse_jira_datetime(value):
    '''
    Parse a Jira timestamp string.

    Input:
        value: Timestamp such as "2024-03-01T09:15:02.000+0000", or a datetime.

    Output:
        datetime (timezone aware when the source carries an offset).

    Raises:
        ValueError: If the value is not a recognised timestamp.
    '''
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    for fmt in _JIRA_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return datetime.fromisoformat(text.replace('Z', '+00:00'))


def _named(value):
    if isinstance(value, dict):
        return value.get('name')
    return value


def _user_name(value):
    if isinstance(value, dict):
        return value.get('displayName') or value.get('name')
    return value


def _custom_value(value):
    '''Render a custom field (string, number, option object or list) as text.'''
    if value is None:
        return None
    if isinstance(value, list):
        parts = [_custom_value(v) for v in value]
        parts = [p for p in parts if p]
        return ', '.join(parts) if parts else None
    if isinstance(value, dict):
        for attr in ('value', 'name', 'displayName', 'key'):
            if value.get(attr) is not None:
                return str(value[attr])
        return None
    text = str(value).strip()
    return text or None


# ****************************************************************************************
# Field table
# ****************************************************************************************

@dataclass(frozen=True)
class FieldSpec:
    '''
    How one Ticket attribute is read from the raw issue.

    Attributes:
        attr:     Ticket attribute name.
        source:   Jira field name (reported in MalformedRecordError).
        path:     Keys to follow from the issue root.
        required: Whether absence makes the record malformed.
        convert:  Applied to the value found at path.
    '''
    attr: str
    source: str
    path: Tuple[str, ...]
    required: bool = False
    convert: Optional[Callable[[Any], Any]] = None


CORE_FIELDS: Tuple[FieldSpec, ...] = (
    FieldSpec('key', 'key', ('key',), required=True),
    FieldSpec('summary', 'summary', ('fields', 'summary'), required=True),
    FieldSpec('status', 'status', ('fields', 'status'), required=True, convert=_named),
    FieldSpec('issue_type', 'issuetype', ('fields', 'issuetype'), required=True, convert=_named),
    FieldSpec('created', 'created', ('fields', 'created'), required=True, convert=parse_jira_datetime),
    FieldSpec('assignee', 'assignee', ('fields', 'assignee'), convert=_user_name),
    FieldSpec('priority', 'priority', ('fields', 'priority'), convert=_named),
    FieldSpec('resolution_date', 'resolutiondate', ('fields', 'resolutiondate'), convert=parse_jira_datetime),
)


def _custom_specs(custom_fields):
    return tuple(
        FieldSpec(f'custom_{idx}', field_id, ('fields', field_id), convert=_custom_value)
        for idx, field_id in enumerate(custom_fields, 1)
    )


def _lookup(raw, path):
    node = raw
    for part in path:
        if not isinstance(node, dict):
            return None
        node = node.get(part)
    return node


def _extract(spec, raw, key):
    value = _lookup(raw, spec.path)
    if value is not None and spec.convert is not None:
        try:
            value = spec.convert(value)
        except ValueError as e:
            if spec.required:
                raise MalformedRecordError(spec.source, key, detail=f'is invalid ({e})')
            log.warning(f'Ignoring unparseable {spec.source} on {key}: {e}')
            value = None
    if value is None and spec.required:
        raise MalformedRecordError(spec.source, key)
    return value


# ****************************************************************************************
# Linked issues
# ****************************************************************************************

def parse_issue_links(links):
    '''
    Extract linked issues from a fields.issuelinks collection.

    Input:
        links: List of issue link dicts, or None.

    Output:
        Tuple of LinkedIssue in source order. Links with neither an inward nor
        an outward issue are skipped.
    '''
    result = []
    for link in links or []:
        if not isinstance(link, dict):
            continue
        link_type = link.get('type') if isinstance(link.get('type'), dict) else {}
        if link.get('outwardIssue'):
            other = link['outwardIssue']
            label = link_type.get('outward') or link_type.get('name') or ''
        elif link.get('inwardIssue'):
            other = link['inwardIssue']
            label = link_type.get('inward') or link_type.get('name') or ''
        else:
            log.debug(f'Skipping issue link without a linked issue: {link.get("id")}')
            continue
        linked_key = other.get('key') if isinstance(other, dict) else None
        if not linked_key:
            continue
        result.append(LinkedIssue(key=linked_key, relationship=label))
    return tuple(result)


# ****************************************************************************************
# Public API
# ****************************************************************************************

def parse_one(raw_issue: Dict[str, Any], custom_fields: Sequence[str] = DEFAULT_CUSTOM_FIELDS) -> Ticket:
    '''
    Normalize one raw issue into a Ticket.

    Input:
        raw_issue: Issue dict as returned by the issue or search endpoint.
        custom_fields: The two custom field ids mapped to custom_1/custom_2.

    Output:
        Ticket.

    Raises:
        MalformedRecordError: If key, summary, status, issuetype or created is
            missing (or created cannot be parsed).
    '''
    if not isinstance(raw_issue, dict):
        raise MalformedRecordError('key', detail=f'missing (record is {type(raw_issue).__name__})')

    key = raw_issue.get('key') if isinstance(raw_issue.get('key'), str) else None
    values = {}
    for spec in CORE_FIELDS + _custom_specs(custom_fields):
        values[spec.attr] = _extract(spec, raw_issue, key)

    fields = raw_issue.get('fields') or {}
    values['linked_issues'] = parse_issue_links(fields.get('issuelinks'))

    ticket = Ticket(**values)
    log.debug(f'Parsed {ticket.key}: {len(ticket.linked_issues)} linked issues')
    return ticket


def parse_many(envelope: Dict[str, Any], custom_fields: Sequence[str] = DEFAULT_CUSTOM_FIELDS) -> List[Ticket]:
    '''
    Normalize every issue of a search envelope, in order.

    A single malformed issue aborts the whole batch.

    Input:
        envelope: Dict with an "issues" list (e.g. AggregatedResult.to_envelope()).
        custom_fields: The two custom field ids mapped to custom_1/custom_2.

    Output:
        List of Ticket; empty when "issues" is absent.

    Raises:
        MalformedRecordError: On the first malformed issue.
    '''
    issues = envelope.get('issues') if isinstance(envelope, dict) else None
    if not isinstance(issues, list):
        log.debug('Search envelope has no issues array')
        return []

    tickets = [parse_one(issue, custom_fields) for issue in issues]
    log.debug(f'Parsed {len(tickets)} tickets')
    return tickets
