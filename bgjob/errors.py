"""
Error taxonomy for the background job client.

Every failure carries the diagnostic text supplied by whoever detected it,
so the CLI can report it verbatim.
"""


class JobQueueError(Exception):
    """Base class for all client errors."""


class ConfigurationError(JobQueueError):
    """Invalid arguments or input, detected before any network interaction."""


class ServerConnectionError(JobQueueError):
    """A job-queue server could not be registered or reached."""


class SubmissionError(JobQueueError):
    """A background submission was rejected or failed."""


class QueryError(JobQueueError):
    """A single job status query failed."""


class ProtocolError(QueryError):
    """The server sent a packet that could not be decoded."""
