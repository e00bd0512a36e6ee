"""LLM integration for natural-language workflow drafting."""

from trackflow.llm.client import LLMClient, get_client
from trackflow.llm.workflow_generator import WorkflowDraftGenerator, WorkflowIntent

__all__ = [
    # Claude client
    "get_client",
    "LLMClient",
    # Draft generation
    "WorkflowDraftGenerator",
    "WorkflowIntent",
]
