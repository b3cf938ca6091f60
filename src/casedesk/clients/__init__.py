"""HTTP clients for the remote case service."""

from casedesk.clients.base import BaseServiceClient
from casedesk.clients.case_service_client import CaseServiceClient

__all__ = [
    "BaseServiceClient",
    "CaseServiceClient",
]
