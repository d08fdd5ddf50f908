#!/usr/bin/env python3
##########################################################################################
#
# Script name: main.py
#
# Description: CLI entry point for the Jira ticket exporter.
#              Exports one ticket, or every ticket created or resolved in a date
#              range, to an Excel workbook.
#
# Author: Cornelis Networks
#
# Usage:
#   python main.py --help
#   python main.py ticket PROJ-123
#   python main.py range --start 2024-01-01 --end 2024-01-31 --project PROJ
#   python main.py range --start 2024-01-01 --end 2024-01-31 --issue-types Bug Task --update-existing
#
##########################################################################################

import argparse
import logging
import sys
import os
from dataclasses import replace
from datetime import date

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# ****************************************************************************************
# Global data and configuration
# ****************************************************************************************

# Logging config - follows jira_utils.py pattern
log = logging.getLogger(os.path.basename(sys.argv[0]))
log.setLevel(logging.DEBUG)

formatter = logging.Formatter(
    '%(asctime)-15s [%(funcName)25s:%(lineno)-5s] %(levelname)-8s %(message)s')

# File and stdout handlers, attached by handle_args() once settings are loaded
fh = None
ch = None

from config.settings import get_settings
from excel_utils import ExcelFileError
from jira_utils import TransportError
from ticket_export import ExportError, run_export
from tickets.models import ALL_PROJECTS, ExportRequest, SearchFilter
from tickets.normalizer import MalformedRecordError

# Output control
_quiet_mode = False


def output(message=''):
    '''
    Print user-facing output, respecting quiet mode.
    Always logs to file regardless of quiet mode.
    '''
    if message and fh is not None:
        record = logging.LogRecord(
            name=log.name,
            level=logging.INFO,
            pathname=__file__,
            lineno=0,
            msg=f'OUTPUT: {message}',
            args=(),
            exc_info=None,
            func='output'
        )
        fh.emit(record)

    if not _quiet_mode:
        print(message)


# ****************************************************************************************
# Request building
# ****************************************************************************************

def _iso_date(value):
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f'invalid date "{value}" (expected YYYY-MM-DD)')


def build_request(args, settings):
    '''
    Build the immutable ExportRequest for one CLI invocation.

    Command line options take precedence over settings from the environment.

    Raises:
        ValueError: If the effective configuration is invalid (missing URL or
            token, bad page size or timeout).
    '''
    base_url = args.jira_url or settings.jira_url
    token = args.token or settings.jira_api_token
    replace(settings, jira_url=base_url, jira_api_token=token).validate()

    common = dict(
        base_url=base_url,
        token=token,
        export_dir=args.export_dir or settings.export_dir,
        update_existing=args.update_existing,
        debug=args.debug or settings.jira_debug,
    )

    if args.command == 'ticket':
        return ExportRequest(ticket_key=args.key.strip(), **common)

    search_filter = SearchFilter(
        start_date=args.start,
        end_date=args.end,
        assignee=args.assignee,
        project=args.project,
        issue_types=tuple(args.issue_types or ()),
    )
    return ExportRequest(search_filter=search_filter, **common)


# ****************************************************************************************
# Command handlers
# ****************************************************************************************

def cmd_export(args):
    '''
    Run the ticket or date range export and print the outcome.
    '''
    log.debug(f'cmd_export(command={args.command})')
    settings = get_settings()
    request = build_request(args, settings)

    if request.update_existing:
        output('Update Existing Excel mode: a new sheet is added to the existing workbook.')

    result = run_export(request, settings)
    output('')
    output(result.message)
    output('')
    return 0


# ****************************************************************************************
# Argument handling
# ****************************************************************************************

def build_parser():
    '''
    Build the argument parser (shared options plus the ticket/range subcommands).
    '''
    parser = argparse.ArgumentParser(
        description='Export Jira tickets to an Excel workbook',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Credentials Setup:
  Set the following environment variables (or put them in a .env file):
    export JIRA_URL="https://jira.example.com"
    export JIRA_API_TOKEN="your_personal_access_token"

Examples:
  %(prog)s ticket PROJ-123
  %(prog)s range --start 2024-01-01 --end 2024-01-31
  %(prog)s range --start 2024-01-01 --end 2024-01-31 --project PROJ --assignee "Jane Doe"
  %(prog)s range --start 2024-01-01 --end 2024-01-31 --issue-types Bug "Issue Investigation"
  %(prog)s --export-dir out --update-existing range --start 2024-02-01 --end 2024-02-29
        '''
    )

    # Global options
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Enable verbose output to stdout.')
    parser.add_argument('-q', '--quiet', action='store_true',
                        help='Minimal stdout.')
    parser.add_argument('--env', type=str, default=None, metavar='FILE',
                        help='Path to dotenv file to load (overrides the default .env).')
    parser.add_argument('--jira-url', type=str, metavar='URL', dest='jira_url',
                        help='Jira base URL (default: JIRA_URL).')
    parser.add_argument('--token', type=str, metavar='TOKEN',
                        help='Personal access token (default: JIRA_API_TOKEN).')
    parser.add_argument('--export-dir', type=str, metavar='DIR', dest='export_dir',
                        help='Directory for the workbook (default: JIRA_EXPORT_DIR or ./exports).')
    parser.add_argument('--update-existing', action='store_true', dest='update_existing',
                        help='Add a new sheet to an existing workbook instead of overwriting it.')
    parser.add_argument('--debug', action='store_true',
                        help='Log every HTTP request/response and do not follow redirects.')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # Single ticket
    ticket_parser = subparsers.add_parser('ticket', help='Export a single ticket by key')
    ticket_parser.add_argument('key', help='Ticket key, e.g. PROJ-123')
    ticket_parser.set_defaults(func=cmd_export)

    # Date range
    range_parser = subparsers.add_parser('range', help='Export tickets created or resolved in a date range')
    range_parser.add_argument('--start', required=True, type=_iso_date, metavar='YYYY-MM-DD',
                              help='First day of the range (inclusive)')
    range_parser.add_argument('--end', required=True, type=_iso_date, metavar='YYYY-MM-DD',
                              help='Last day of the range (inclusive)')
    range_parser.add_argument('--assignee', '-a',
                              help='Only tickets assigned to this user')
    range_parser.add_argument('--project', '-p', default=None,
                              help=f'Project key ("{ALL_PROJECTS}" or omitted for every project)')
    range_parser.add_argument('--issue-types', '-t', nargs='+', metavar='TYPE', dest='issue_types',
                              help='Only these issue types')
    range_parser.set_defaults(func=cmd_export)

    return parser


def handle_args(argv=None):
    '''
    Parse CLI arguments and configure console logging handlers.

    Side Effects:
        Replaces the file and stdout handlers of the module logger and reloads
        settings when --env is given.
    '''
    global _quiet_mode, fh, ch

    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.env:
        if not os.path.exists(args.env):
            parser.error(f'dotenv file not found: {args.env}')
        load_dotenv(dotenv_path=args.env, override=True)

    try:
        settings = get_settings(reload=bool(args.env))
    except ValueError as e:
        parser.error(f'invalid configuration: {e}')

    # Drop handlers left by a previous call before attaching new ones
    for handler in (fh, ch):
        if handler is not None:
            log.removeHandler(handler)
            handler.close()

    # File handler for logging
    fh = logging.FileHandler(settings.log_file, mode='w')
    fh.setLevel(settings.log_level.upper())
    fh.setFormatter(formatter)
    log.addHandler(fh)

    # Configure stdout logging based on arguments (always add handler, level varies)
    ch = logging.StreamHandler(sys.stdout)
    if args.verbose:
        ch.setLevel(logging.DEBUG)
    elif args.quiet:
        ch.setLevel(logging.ERROR)
    else:
        ch.setLevel(logging.INFO)
    ch.setFormatter(formatter)
    log.addHandler(ch)

    _quiet_mode = args.quiet

    log.info('++++++++++++++++++++++++++++++++++++++++++++++')
    log.info(f'+  {os.path.basename(sys.argv[0])}')
    log.info(f'+  Python Version: {sys.version.split()[0]}')
    log.info(f'+  Today is: {date.today()}')
    log.info(f'+  Command: {args.command}')
    log.info('++++++++++++++++++++++++++++++++++++++++++++++')

    return args


# ****************************************************************************************
# Main
# ****************************************************************************************

def main(argv=None):
    '''
    Entrypoint for the CLI.

    Output:
        Exit code 0 on success, 1 on failure.
    '''
    args = handle_args(argv)
    log.debug('Entering main()')

    try:
        exit_code = args.func(args)

    except (TransportError, MalformedRecordError, ExcelFileError, ExportError) as e:
        log.error(e.message)
        output('')
        output(f'ERROR: {e.message}')
        output('')
        exit_code = 1

    except ValueError as e:
        log.error(str(e))
        output(f'ERROR: {e}')
        exit_code = 1

    except KeyboardInterrupt:
        output('\nOperation cancelled.')
        exit_code = 130

    except Exception as e:
        log.error(f'Unexpected error: {e}', exc_info=True)
        output(f'ERROR: {e}')
        exit_code = 1

    log.info('Operation complete.')
    sys.exit(exit_code)


if __name__ == '__main__':
    main()
