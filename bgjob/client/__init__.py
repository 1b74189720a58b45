"""
Job-queue client module.
Contains the client session interface and its protocol implementations.
"""

from bgjob.client.base import JobQueueClient, make_address, parse_server
from bgjob.client.gearman import GearmanClient
from bgjob.client.http import HttpJobQueueClient
from bgjob.config import Settings
from bgjob.constants import Backend


def create_client(settings: Settings) -> JobQueueClient:
    """
    Create an unconfigured client session for the configured backend.

    Servers and the timeout are registered by the caller.
    """
    if settings.backend == Backend.HTTP:
        return HttpJobQueueClient(api_token=settings.http_api_token)
    return GearmanClient()


__all__ = [
    "JobQueueClient",
    "GearmanClient",
    "HttpJobQueueClient",
    "create_client",
    "make_address",
    "parse_server",
]
