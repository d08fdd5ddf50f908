##########################################################################################
#
# Module: tickets
#
# Description: Ticket models and JSON normalization for the Jira ticket exporter.
#
# Author: Cornelis Networks
#
##########################################################################################

from tickets.models import (
    ALL_PROJECTS,
    AggregatedResult,
    ExportRequest,
    ExportResult,
    LinkedIssue,
    SearchFilter,
    Ticket,
)
from tickets.normalizer import MalformedRecordError, parse_many, parse_one

__all__ = [
    # Models
    'ALL_PROJECTS',
    'AggregatedResult',
    'ExportRequest',
    'ExportResult',
    'LinkedIssue',
    'SearchFilter',
    'Ticket',
    # Normalizer
    'MalformedRecordError',
    'parse_many',
    'parse_one',
]
