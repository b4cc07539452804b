"""
Custom Exceptions
Exception hierarchy for the generation orchestrator.
"""


class LongformError(Exception):
    """Base exception for the longform writer."""

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self):
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(LongformError):
    """Missing or invalid configuration"""
    pass


class ScraperError(LongformError):
    """Scrape collaborator failed for one URL"""

    def __init__(self, message: str, url: str = None, **kwargs):
        super().__init__(message, kwargs)
        self.url = url


class SearchError(LongformError):
    """Web search collaborator failed"""

    def __init__(self, message: str, query: str = None, **kwargs):
        super().__init__(message, kwargs)
        self.query = query


class LLMError(LongformError):
    """Generative model call failed"""

    def __init__(self, message: str, provider: str = None, **kwargs):
        super().__init__(message, kwargs)
        self.provider = provider


class StoreError(LongformError):
    """Job store error"""
    pass


class StoreUnavailableError(StoreError):
    """Store temporarily unreachable; the write may be retried"""
    pass


class JobNotFoundError(StoreError):
    """No record for the requested job"""

    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}", {"job_id": job_id})
        self.job_id = job_id


class InvalidProgressTransition(StoreError):
    """Progress marker moved backwards or left a terminal state"""
    pass


class StageError(LongformError):
    """Terminal failure of one pipeline stage"""

    def __init__(self, message: str, stage: str, **kwargs):
        super().__init__(message, kwargs)
        self.stage = stage
