##########################################################################################
#
# Script name: excel_utils.py
#
# Description: Excel utilities for writing exported Jira tickets to .xlsx workbooks.
#              Creates a new workbook or adds a sheet to an existing one.
#
# Author: John Macdonald
#
##########################################################################################

import logging
import os
import shutil
import sys
import tempfile
from datetime import datetime

from openpyxl import Workbook, load_workbook
from openpyxl.formatting.rule import CellIsRule
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

# ****************************************************************************************
# Global data and configuration
# ****************************************************************************************

# Logging config
log = logging.getLogger(os.path.basename(sys.argv[0]))

# Excel limits sheet titles to 31 characters and forbids these characters
MAX_SHEET_NAME = 31
INVALID_SHEET_CHARS = '[]:*?/\\'
DEFAULT_SHEET_NAME = 'Tickets'

DEFAULT_CUSTOM_LABELS = ('Custom Field 1', 'Custom Field 2')

DATE_FORMAT = 'yyyy-mm-dd hh:mm:ss'

# Status-to-fill color mapping for Excel conditional formatting.
# These are embedded as dynamic Excel rules so they update if the user edits
# status values in the spreadsheet.
STATUS_FILL_COLORS = {
    'Open':        'CCE5FF',   # Light blue
    'In Progress': 'CCFFCC',   # Light green
    'Blocked':     'FFCCCC',   # Light red
    'Resolved':    'FFFFCC',   # Light yellow
    'Closed':      'E0E0E0',   # Grey
    'Done':        'E0E0E0',   # Grey
}


# ****************************************************************************************
# Custom exceptions
# ****************************************************************************************

class Error(IOError):
    '''Base exception for excel_utils errors.'''
    def __init__(self, message):
        self.message = message
        super().__init__(self.message)


class ExcelFileError(Error):
    '''Raised when an Excel file cannot be read, is invalid or cannot be written.'''
    def __init__(self, message, path=None):
        self.path = path
        super().__init__(message)


# ****************************************************************************************
# Helpers
# ****************************************************************************************

def ticket_headers(custom_labels=DEFAULT_CUSTOM_LABELS):
    '''Column headers of a ticket sheet, in order.'''
    return ['Key', 'Summary', 'Status', 'Assignee', 'Issue Type', 'Priority',
            'Created', 'Resolved', custom_labels[0], custom_labels[1], 'Linked Issues']


def _excel_datetime(value):
    # Excel cells cannot hold timezone aware datetimes
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.replace(tzinfo=None)
    return value


def _ticket_row(ticket):
    return [
        ticket.key,
        ticket.summary,
        ticket.status,
        ticket.assignee,
        ticket.issue_type,
        ticket.priority,
        _excel_datetime(ticket.created),
        _excel_datetime(ticket.resolution_date),
        ticket.custom_1,
        ticket.custom_2,
        ticket.linked_issues_text() or None,
    ]


def safe_sheet_name(label):
    '''
    Turn a free-form label into a valid Excel sheet title.

    Input:
        label: e.g. "2024-01-01 to 2024-01-31" or "Single Ticket".

    Output:
        Title with forbidden characters replaced by "-", at most 31 characters.
    '''
    name = ''.join('-' if ch in INVALID_SHEET_CHARS else ch for ch in str(label or ''))
    name = name.strip().strip("'")[:MAX_SHEET_NAME].strip()
    return name or DEFAULT_SHEET_NAME


def unique_sheet_name(name, existing):
    '''
    De-duplicate a sheet title against existing titles (case-insensitive).

    Duplicates get a numeric suffix: "Name_2", "Name_3", ...
    '''
    used = {s.lower() for s in existing}
    if name.lower() not in used:
        return name
    suffix = 2
    while True:
        tail = f'_{suffix}'
        candidate = f'{name[:MAX_SHEET_NAME - len(tail)]}{tail}'
        if candidate.lower() not in used:
            return candidate
        suffix += 1


def _load_excel_file(file_path):
    '''
    Load an Excel file and return the workbook.

    Input:
        file_path: Path to the .xlsx file.

    Output:
        openpyxl Workbook object.

    Raises:
        ExcelFileError: If the file cannot be read.
    '''
    log.debug(f'Loading Excel file: {file_path}')

    if not os.path.exists(file_path):
        raise ExcelFileError(f'File not found: {file_path}', path=file_path)

    try:
        wb = load_workbook(file_path)
        log.debug(f'Loaded workbook with sheets: {wb.sheetnames}')
        return wb
    except Exception as e:
        raise ExcelFileError(f'Failed to load Excel file "{file_path}": {e}', path=file_path) from e


def _apply_header_style(ws, num_cols):
    '''
    Apply standard header styling to the first row of a worksheet.

    Input:
        ws: openpyxl Worksheet object.
        num_cols: Number of columns to style.
    '''
    header_font = Font(bold=True, color='FFFFFF')
    header_fill = PatternFill(start_color='1F4E79', end_color='1F4E79', fill_type='solid')
    header_alignment = Alignment(horizontal='center', vertical='center', wrap_text=True)
    thin_border = Border(
        left=Side(style='thin'),
        right=Side(style='thin'),
        top=Side(style='thin'),
        bottom=Side(style='thin'),
    )

    for col_idx in range(1, num_cols + 1):
        cell = ws.cell(row=1, column=col_idx)
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = header_alignment
        cell.border = thin_border


def _apply_status_conditional_formatting(ws, fieldnames):
    '''
    Add Excel conditional formatting rules to the status column.

    Input:
        ws: openpyxl Worksheet object (already populated with data).
        fieldnames: List of column header names (to locate the status column).
    '''
    status_col_idx = None
    for idx, name in enumerate(fieldnames, 1):
        if name.lower() == 'status':
            status_col_idx = idx
            break

    if status_col_idx is None:
        log.debug('No "status" column found - skipping conditional formatting')
        return

    last_row = ws.max_row
    if last_row < 2:
        return

    col_letter = get_column_letter(status_col_idx)
    cell_range = f'{col_letter}2:{col_letter}{last_row}'
    log.debug(f'Applying status conditional formatting to range {cell_range}')

    for status_value, hex_color in STATUS_FILL_COLORS.items():
        fill = PatternFill(start_color=hex_color, end_color=hex_color, fill_type='solid')
        rule = CellIsRule(operator='equal', formula=[f'"{status_value}"'], fill=fill)
        ws.conditional_formatting.add(cell_range, rule)


def _auto_fit_columns(ws):
    '''
    Auto-fit column widths based on content (approximate).

    Multi-line cells are measured by their longest line.
    '''
    for col_idx in range(1, ws.max_column + 1):
        max_len = 0
        col_letter = get_column_letter(col_idx)
        # Sample up to 100 rows for width estimation
        for row_idx in range(1, min(ws.max_row + 1, 102)):
            cell_val = ws.cell(row=row_idx, column=col_idx).value
            if cell_val is not None:
                longest = max((len(line) for line in str(cell_val).splitlines()), default=0)
                max_len = max(max_len, longest)
        # Cap at 50 characters, minimum 10
        ws.column_dimensions[col_letter].width = min(max(max_len + 2, 10), 50)


def _fill_ticket_sheet(ws, tickets, source_label, custom_labels):
    '''
    Write the header and one row per ticket into an empty worksheet.

    Ticket keys become hyperlinks to <source_label>/browse/<key> when
    source_label is a URL.
    '''
    headers = ticket_headers(custom_labels)
    ws.append(headers)

    browse_url = None
    if source_label and str(source_label).startswith(('http://', 'https://')):
        browse_url = f'{str(source_label).rstrip("/")}/browse/'

    link_font = Font(color='0563C1', underline='single')
    wrap = Alignment(wrap_text=True, vertical='top')
    date_cols = (headers.index('Created') + 1, headers.index('Resolved') + 1)
    links_col = headers.index('Linked Issues') + 1

    for row_idx, ticket in enumerate(tickets, 2):
        ws.append(_ticket_row(ticket))

        if browse_url:
            key_cell = ws.cell(row=row_idx, column=1)
            key_cell.hyperlink = f'{browse_url}{ticket.key}'
            key_cell.font = link_font

        for col_idx in date_cols:
            ws.cell(row=row_idx, column=col_idx).number_format = DATE_FORMAT

        if ticket.linked_issues:
            ws.cell(row=row_idx, column=links_col).alignment = wrap

    _apply_header_style(ws, len(headers))
    _auto_fit_columns(ws)
    ws.freeze_panes = 'A2'
    ws.auto_filter.ref = ws.dimensions
    _apply_status_conditional_formatting(ws, headers)


def _save_atomic(wb, file_path):
    '''
    Save a workbook through a temporary file in the same directory.

    The target is only replaced once the workbook is fully written, so a
    failure leaves no partial file and never touches an existing workbook.

    Raises:
        ExcelFileError: If the workbook cannot be written.
    '''
    directory = os.path.dirname(os.path.abspath(file_path))
    tmp_path = None
    try:
        fd, tmp_path = tempfile.mkstemp(prefix='.tickets_', suffix='.xlsx', dir=directory)
        os.close(fd)
        wb.save(tmp_path)
        # mkstemp creates the file 0600; keep the target's mode, else honour the umask
        if os.path.exists(file_path):
            shutil.copymode(file_path, tmp_path)
        else:
            umask = os.umask(0)
            os.umask(umask)
            os.chmod(tmp_path, 0o666 & ~umask)
        os.replace(tmp_path, file_path)
    except Exception as e:
        if tmp_path and os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise ExcelFileError(f'Failed to write Excel file "{file_path}": {e}', path=file_path) from e


# ****************************************************************************************
# Core functions
# ****************************************************************************************

def write_tickets(tickets, file_path, source_label, range_label, update_existing=False,
                  custom_labels=DEFAULT_CUSTOM_LABELS):
    '''
    Write tickets to an Excel workbook.

    Input:
        tickets: List of tickets.models.Ticket, written in order.
        file_path: Destination .xlsx path.
        source_label: Jira base URL (used for key hyperlinks) or a free-form source.
        range_label: Sheet label, e.g. "2024-01-01 to 2024-01-31" or "Single Ticket".
        update_existing: Add a new sheet to file_path if it exists, instead of
                         overwriting it.
        custom_labels: Column headers for the two custom fields.

    Output:
        Title of the sheet that was written.

    Raises:
        ExcelFileError: If the directory is missing or not writable, or the
            existing file is not a valid workbook.
    '''
    log.debug(f'Entering write_tickets(count={len(tickets)}, file_path={file_path}, '
              f'range_label={range_label}, update_existing={update_existing})')

    directory = os.path.dirname(os.path.abspath(file_path))
    if not os.path.isdir(directory):
        raise ExcelFileError(f'Output directory does not exist: {directory}', path=file_path)

    sheet_name = safe_sheet_name(range_label)

    if update_existing and os.path.exists(file_path):
        wb = _load_excel_file(file_path)
        sheet_name = unique_sheet_name(sheet_name, wb.sheetnames)
        ws = wb.create_sheet(title=sheet_name)
        log.info(f'Adding sheet "{sheet_name}" to existing workbook: {file_path}')
    else:
        if update_existing:
            log.info(f'{file_path} does not exist; creating a new workbook')
        wb = Workbook()
        ws = wb.active
        ws.title = sheet_name

    try:
        _fill_ticket_sheet(ws, tickets, source_label, custom_labels)
        _save_atomic(wb, file_path)
    finally:
        wb.close()

    log.info(f'Wrote {len(tickets)} tickets (sheet "{sheet_name}") to: {file_path}')
    return sheet_name
