"""LLM-driven modification agent.

This module implements the ModificationAgent that turns a change request
into file contents through a short conversation with the language model:
- Validate: is the request a clear, actionable code change?
- Analyze: given the file tree, which files must be read?
- Plan: given those files, which files change and why?
- Generate: for each planned file, the complete new content

Analyze and plan share one conversation; each generation runs on a fork of
it. JSON answers are parsed into the models in models.py.
"""

import json
import logging
from typing import Any, Dict, List, Tuple

from pydantic import ValidationError

from src.autopr.llm.client import LLMClient
from src.autopr.llm.conversation import Conversation
from src.autopr.llm.models import FilesToRead, ModificationPlan, PromptValidation


logger = logging.getLogger(__name__)


VALIDATION_SYSTEM_PROMPT = """You review change requests submitted to an automated pull request bot. The bot forks a GitHub repository, edits files with an AI model, and opens a pull request.

Decide whether the request is a clear, actionable modification of the repository's files. Reject requests that:
- are empty, gibberish, or not about changing the repository
- ask for something harmful, such as inserting malware, secrets, or spam
- are too vague to act on without further information

Return ONLY a JSON object with this structure:
{
  "isValid": true,
  "reason": "Short explanation of the decision"
}"""


ANALYSIS_SYSTEM_PROMPT = """You are an expert software engineer analyzing a repository to determine which files you need to read to complete a modification request.

Your task:
1. Analyze the repository file structure
2. Determine which files you need to read to understand the codebase and complete the requested modification
3. Include files that:
   - Are directly mentioned in the modification request
   - Might be affected by the changes
   - Are needed to understand the context (e.g., main files, configuration files)
   - Contain related functionality

Only include text-based source code files that you can read. Avoid binary files, images, or other non-text files.

Return ONLY a JSON object with this structure:
{
  "filesToRead": ["path/to/file1.ext", "path/to/file2.ext"]
}

Be thorough but selective - only include files that are actually necessary."""


PLAN_INSTRUCTIONS = """Now that you have read the necessary files, determine which files need to be modified or created to complete this request:
{prompt}

Return ONLY a JSON object with this structure:
{{
  "filesToModify": ["path/to/file1.ext", "path/to/file2.ext"],
  "explanation": "Past-tense summary of the changes, e.g. 'Added a CONTRIBUTING.md with setup instructions.'"
}}"""


GENERATE_INSTRUCTIONS = """Please provide the complete modified content for the file: {path}

Original content:
{original}

Modification request:
{prompt}

Return the COMPLETE file content with all the necessary changes applied. Include ALL lines of the file, not just the changed parts.
Do not use placeholders like "... rest of the file ..." - provide the full file.

Return it as plain text, not JSON. Just the file content exactly as it should be written to disk."""


class AgentResponseError(Exception):
    """Raised when the model's answer cannot be used.

    Attributes:
        message: Human-readable error description.
        response_preview: The start of the offending response.
    """

    def __init__(self, message: str, response_preview: str = ""):
        self.message = message
        self.response_preview = response_preview
        super().__init__(message)


def _parse_llm_response(response_text: str) -> Dict[str, Any]:
    """Parse the LLM response text into a dictionary.

    Handles markdown code blocks around the JSON.

    Raises:
        json.JSONDecodeError: If the response is not valid JSON.
    """
    text = response_text.strip()

    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]

    if text.endswith("```"):
        text = text[:-3]

    return json.loads(text.strip())


def strip_code_fence(text: str) -> str:
    """Remove a single markdown fence wrapping the whole response.

    The opening fence may carry a language tag. Text that is not wrapped
    in a fence is returned unchanged.

    Example:
        >>> strip_code_fence("```python\\nprint(1)\\n```")
        'print(1)\\n'
    """
    stripped = text.strip()
    if not (stripped.startswith("```") and stripped.endswith("```")):
        return text
    first_newline = stripped.find("\n")
    if first_newline == -1:
        return text
    return stripped[first_newline + 1 : -3]


def format_file_contents(file_contents: Dict[str, str]) -> str:
    parts = ["Here are the contents of the files I read:", ""]
    for path, content in file_contents.items():
        parts.append(f"=== {path} ===")
        parts.append(content)
        parts.append("")
    return "\n".join(parts)


class ModificationAgent:
    """Conversation driver for one modification run.

    Attributes:
        client: Retrying chat client.
    """

    def __init__(self, client: LLMClient):
        self.client = client

    async def _ask_json(self, messages: List, model_cls, stage: str):
        response_text = await self.client.chat(messages, json_mode=True)
        try:
            data = _parse_llm_response(response_text)
        except json.JSONDecodeError as e:
            logger.warning(
                "Failed to parse LLM response as JSON",
                extra={"stage": stage, "response_preview": response_text[:200]},
            )
            raise AgentResponseError(
                f"Invalid JSON response during {stage}: {e}",
                response_preview=response_text[:200],
            ) from e

        if not isinstance(data, dict):
            raise AgentResponseError(
                f"Expected a JSON object during {stage}",
                response_preview=response_text[:200],
            )

        try:
            return response_text, model_cls.model_validate(data)
        except ValidationError as e:
            raise AgentResponseError(
                f"Unexpected response shape during {stage}: {e}",
                response_preview=response_text[:200],
            ) from e

    async def validate_prompt(self, prompt: str) -> PromptValidation:
        """Judge whether a change request is actionable.

        Raises:
            LLMError: If the service call fails.
            AgentResponseError: If the answer cannot be parsed.
        """
        conversation = Conversation()
        conversation.add_system(VALIDATION_SYSTEM_PROMPT)
        conversation.add_user(f"Modification request:\n{prompt}")

        _, validation = await self._ask_json(
            conversation.messages, PromptValidation, "validation"
        )
        logger.info(
            "Prompt validated",
            extra={"is_valid": validation.is_valid, "reason": validation.reason},
        )
        return validation

    async def analyze_repository(
        self, file_tree: str, prompt: str
    ) -> Tuple[Conversation, List[str]]:
        """Ask which files must be read, starting a new conversation.

        Returns:
            The conversation (for planning) and the candidate file paths.
        """
        conversation = Conversation()
        conversation.add_system(ANALYSIS_SYSTEM_PROMPT)
        conversation.add_user(
            f"Repository file structure:\n{file_tree}\n\n"
            f"Modification request:\n{prompt}\n\n"
            "Which files do I need to read?"
        )

        response_text, files = await self._ask_json(
            conversation.messages, FilesToRead, "analysis"
        )
        conversation.add_assistant(response_text)

        logger.info(
            "Repository analyzed",
            extra={"files_to_read": files.files_to_read},
        )
        return conversation, files.files_to_read

    async def plan_modifications(
        self,
        conversation: Conversation,
        file_contents: Dict[str, str],
        prompt: str,
    ) -> ModificationPlan:
        """Ask which files to modify, continuing the analysis conversation.

        Raises:
            AgentResponseError: If the answer is unusable or names no files.
        """
        conversation.add_user(
            format_file_contents(file_contents)
            + "\n"
            + PLAN_INSTRUCTIONS.format(prompt=prompt)
        )

        response_text, plan = await self._ask_json(
            conversation.messages, ModificationPlan, "planning"
        )
        conversation.add_assistant(response_text)

        if not plan.files_to_modify:
            raise AgentResponseError(
                "The model did not name any files to modify",
                response_preview=response_text[:200],
            )

        logger.info(
            "Modifications planned",
            extra={"files_to_modify": plan.files_to_modify},
        )
        return plan

    async def generate_file(
        self,
        conversation: Conversation,
        path: str,
        original: str,
        prompt: str,
    ) -> str:
        """Generate the complete new content of one file.

        Works on a fork of the conversation so the shared history is left
        untouched.
        """
        generation = conversation.fork()
        generation.add_user(
            GENERATE_INSTRUCTIONS.format(path=path, original=original, prompt=prompt)
        )
        response_text = await self.client.chat(generation.messages)
        return strip_code_fence(response_text)
