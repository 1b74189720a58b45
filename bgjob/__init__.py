"""
Background Job Client

Submits a unit of work to a job-queue server for background execution and
polls the server for its progress until the job completes or is forgotten.
"""

__version__ = "1.0.0"
