"""
Comedia Common Module

Shared infrastructure for the capture pipeline and the task lifecycle.
"""

from .config import ComediaConfig, load_config, build_llm_client
from .errors import (
    PipelineError,
    ValidationError,
    UpstreamServiceError,
    MalformedResponseError,
    PersistenceError,
)
from .llm_client import LLMClient
from .task_store import TaskStore, InMemoryTaskStore, JsonTaskStore

__all__ = [
    "ComediaConfig",
    "load_config",
    "build_llm_client",
    "PipelineError",
    "ValidationError",
    "UpstreamServiceError",
    "MalformedResponseError",
    "PersistenceError",
    "LLMClient",
    "TaskStore",
    "InMemoryTaskStore",
    "JsonTaskStore",
]
