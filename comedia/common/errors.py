"""
Pipeline error taxonomy.

- ValidationError: input text too short or empty, raised before any network call
- UpstreamServiceError: text-generation call failed or timed out
- MalformedResponseError: service answered but the JSON array could not be parsed
- PersistenceError: task store write failed
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for all pipeline errors"""


class ValidationError(PipelineError):
    """Input is not worth extracting from (nothing to extract)"""


class UpstreamServiceError(PipelineError):
    """Text-generation provider returned an error or timed out"""

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message)
        self.provider = provider


class MalformedResponseError(PipelineError):
    """Provider response contained an array span that is not valid JSON"""

    def __init__(self, message: str, raw_response: Optional[str] = None):
        super().__init__(message)
        self.raw_response = raw_response


class PersistenceError(PipelineError):
    """Task store read or write failed"""

    def __init__(self, message: str, task_id: Optional[str] = None):
        super().__init__(message)
        self.task_id = task_id
