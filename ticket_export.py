##########################################################################################
#
# Script name: ticket_export.py
#
# Description: Export workflows tying the Jira client, the ticket normalizer and the
#              Excel writer together: one ticket by key, or every ticket created or
#              resolved within a date range.
#
# Author: John Macdonald
#
##########################################################################################

import logging
import os
import sys

import excel_utils
import jira_utils
from config.settings import Settings, get_settings
from tickets.models import ExportRequest, ExportResult, SearchFilter
from tickets.normalizer import parse_many, parse_one

# ****************************************************************************************
# Global data and configuration
# ****************************************************************************************

# Logging config
log = logging.getLogger(os.path.basename(sys.argv[0]))

SINGLE_TICKET_LABEL = 'Single Ticket'


# ****************************************************************************************
# Exceptions
# ****************************************************************************************

class Error(Exception):
    '''
    Base class for exceptions in this module.
    '''
    pass

class ExportError(Error):
    '''
    Exception raised when an export cannot be prepared (bad request, export directory).
    '''
    def __init__(self, message):
        self.message = f'Export failed: {message}'
        super().__init__(self.message)


# ****************************************************************************************
# File naming
# ****************************************************************************************

def _file_part(value):
    return str(value).strip().replace(' ', '_').replace('/', '_').replace('\\', '_')


def ticket_file_name(ticket_key):
    '''File name for a single ticket export, e.g. ticket_PROJ-1.xlsx.'''
    return f'ticket_{_file_part(ticket_key)}.xlsx'


def range_file_name(search_filter: SearchFilter) -> str:
    '''
    File name for a date range export.

    Output:
        tickets_<start>_to_<end>[_project_<p>][_assigned_to_<a>].xlsx
    '''
    name = f'tickets_{search_filter.start_date}_to_{search_filter.end_date}'
    if search_filter.has_project:
        name += f'_project_{_file_part(search_filter.project)}'
    if search_filter.has_assignee:
        name += f'_assigned_to_{_file_part(search_filter.assignee)}'
    return f'{name}.xlsx'


def ensure_export_dir(export_dir):
    '''
    Create the export directory if needed.

    Raises:
        ExportError: If the directory cannot be created.
    '''
    try:
        os.makedirs(export_dir, exist_ok=True)
    except OSError as e:
        raise ExportError(f'cannot create export directory "{export_dir}": {e}') from e
    return export_dir


# ****************************************************************************************
# Workflows
# ****************************************************************************************

def make_client(request: ExportRequest, settings: Settings):
    return jira_utils.JiraApiClient(
        request.base_url,
        request.token,
        debug=request.debug,
        read_timeout=settings.jira_read_timeout,
    )


def _search_fields(settings):
    fields = [f for f in jira_utils.DEFAULT_SEARCH_FIELDS if not f.startswith('customfield_')]
    fields[-1:-1] = [field_id for field_id, _ in settings.custom_fields]
    return fields


def export_single_ticket(request: ExportRequest, settings: Settings = None, client=None) -> ExportResult:
    '''
    Fetch one ticket by key and write it to <export_dir>/ticket_<key>.xlsx.

    Input:
        request: ExportRequest with ticket_key set.
        settings: Settings (custom fields, timeouts); global settings if omitted.
        client: Optional JiraApiClient (built from the request if omitted).

    Output:
        ExportResult.

    Raises:
        ExportError, jira_utils.TransportError, tickets.normalizer.MalformedRecordError,
        excel_utils.ExcelFileError.
    '''
    settings = settings or get_settings()
    ticket_key = (request.ticket_key or '').strip()
    if not ticket_key:
        raise ExportError('a ticket key is required in single ticket mode')

    log.info(f'Fetching ticket: {ticket_key}')
    client = client or make_client(request, settings)
    body = client.fetch_issue(ticket_key)
    raw = jira_utils.decode_json(body, f'issue {ticket_key}')

    custom_ids = [field_id for field_id, _ in settings.custom_fields]
    ticket = parse_one(raw, custom_ids)
    log.info(f'Successfully retrieved ticket: {ticket.key}')

    ensure_export_dir(request.export_dir)
    file_path = os.path.join(request.export_dir, ticket_file_name(ticket_key))
    excel_utils.write_tickets(
        [ticket],
        file_path,
        request.base_url,
        SINGLE_TICKET_LABEL,
        update_existing=request.update_existing,
        custom_labels=[label for _, label in settings.custom_fields],
    )
    return ExportResult(file_path=file_path, ticket_count=1,
                        message=f'Exported ticket to: {file_path}')


def export_tickets_by_date_range(request: ExportRequest, settings: Settings = None, client=None) -> ExportResult:
    '''
    Search every ticket created or resolved in a date range and write them to
    <export_dir>/tickets_<start>_to_<end>[...].xlsx.

    Nothing is written when the search finds no tickets.

    Input:
        request: ExportRequest with search_filter set.
        settings: Settings (page size, custom fields); global settings if omitted.
        client: Optional JiraApiClient (built from the request if omitted).

    Output:
        ExportResult.

    Raises:
        ExportError, jira_utils.TransportError, tickets.normalizer.MalformedRecordError,
        excel_utils.ExcelFileError.
    '''
    settings = settings or get_settings()
    search_filter = request.search_filter
    if search_filter is None:
        raise ExportError('a date range is required in date range mode')

    log.info(search_filter.describe())
    client = client or make_client(request, settings)
    result = jira_utils.search_all(
        client,
        search_filter,
        fields=_search_fields(settings),
        page_size=settings.jira_page_size,
    )

    custom_ids = [field_id for field_id, _ in settings.custom_fields]
    tickets = parse_many(result.to_envelope(), custom_ids)
    log.info(f'Found {len(tickets)} tickets in the date range.')

    if not tickets:
        if search_filter.has_assignee:
            message = 'No tickets found for the selected date range and assignee.'
        else:
            message = 'No tickets found for the selected date range.'
        return ExportResult(file_path=None, ticket_count=0, message=message)

    ensure_export_dir(request.export_dir)
    file_path = os.path.join(request.export_dir, range_file_name(search_filter))
    excel_utils.write_tickets(
        tickets,
        file_path,
        request.base_url,
        search_filter.range_label,
        update_existing=request.update_existing,
        custom_labels=[label for _, label in settings.custom_fields],
    )
    return ExportResult(file_path=file_path, ticket_count=len(tickets),
                        message=f'Exported {len(tickets)} tickets to: {file_path}')


def run_export(request: ExportRequest, settings: Settings = None, client=None) -> ExportResult:
    '''Dispatch to the single ticket or date range workflow.'''
    if request.is_single_ticket:
        return export_single_ticket(request, settings, client)
    return export_tickets_by_date_range(request, settings, client)
