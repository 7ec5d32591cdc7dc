"""Prompt Renderer Port - renders named templates with a parameter map."""

from enum import Enum
from typing import Any, Protocol, runtime_checkable

from agentflow.domain.exceptions import TemplateNotFoundError

__all__ = ["PromptRenderer", "PromptType", "TemplateNotFoundError"]


class PromptType(str, Enum):
    """Templates the engine renders."""

    PRIMARY_AGENT = "primary_agent"
    ASSISTANT = "assistant"
    TASK_DESCRIPTOR = "task_descriptor"
    SUBTASKS_GENERATOR = "subtasks_generator"
    QUESTION_SUBTASKS_GENERATOR = "question_subtasks_generator"
    SUBTASKS_REFINER = "subtasks_refiner"
    QUESTION_SUBTASKS_REFINER = "question_subtasks_refiner"
    REPORTER = "reporter"
    QUESTION_REPORTER = "question_reporter"
    REFLECTOR = "reflector"
    QUESTION_REFLECTOR = "question_reflector"
    ADVISER = "adviser"
    QUESTION_ADVISER = "question_adviser"
    ENRICHER = "enricher"
    QUESTION_ENRICHER = "question_enricher"
    CODER = "coder"
    QUESTION_CODER = "question_coder"
    INSTALLER = "installer"
    QUESTION_INSTALLER = "question_installer"
    PENTESTER = "pentester"
    QUESTION_PENTESTER = "question_pentester"
    MEMORIST = "memorist"
    QUESTION_MEMORIST = "question_memorist"
    SEARCHER = "searcher"
    QUESTION_SEARCHER = "question_searcher"
    SUMMARIZER = "summarizer"
    TOOL_CALL_FIXER = "tool_call_fixer"
    INPUT_TOOL_CALL_FIXER = "input_tool_call_fixer"
    FULL_EXECUTION_CONTEXT = "full_execution_context"
    SHORT_EXECUTION_CONTEXT = "short_execution_context"
    EXECUTION_LOGS = "execution_logs"


@runtime_checkable
class PromptRenderer(Protocol):
    def render_template(self, prompt_type: PromptType, params: Any) -> str:
        """Render a template.

        Raises:
            TemplateNotFoundError: If the template does not exist
        """
        ...
