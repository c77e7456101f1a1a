"""Base tool class for agent turns.

Every tool receives the TurnContext of the calling turn explicitly, so no
ambient per-call state is needed to find the session it runs in.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict

from dialogue_engine.domain.exceptions import ToolExecutionError
from dialogue_engine.domain.model.turn import TurnContext

logger = logging.getLogger(__name__)

MAX_OUTPUT_CHARS = 50_000


class AgentTool(ABC):
    """
    Abstract base class for agent tools.

    All tools bound to a turn must inherit from this class and implement
    ``execute``. ``safe_execute`` is what the orchestrator calls: it never
    raises, failures come back as an ``Error: ...`` string for the model.
    """

    def __init__(self, name: str, description: str, max_output_chars: int = MAX_OUTPUT_CHARS):
        self._name = name
        self._description = description
        self._max_output_chars = max_output_chars

    @property
    def name(self) -> str:
        """Get the tool name."""
        return self._name

    @property
    def description(self) -> str:
        """Get the tool description."""
        return self._description

    def get_parameters_schema(self) -> Dict[str, Any]:
        """JSON schema of the tool arguments."""
        return {"type": "object", "properties": {}, "required": []}

    @abstractmethod
    async def execute(self, turn: TurnContext, /, **kwargs: Any) -> str:
        """
        Execute the tool with the given arguments.

        Args:
            turn: Context of the calling turn
            **kwargs: Tool-specific arguments

        Returns:
            String result of the tool execution
        """
        pass

    def validate_args(self, **kwargs: Any) -> bool:
        """Check required arguments against the parameters schema."""
        required = self.get_parameters_schema().get("required", [])
        return all(kwargs.get(key) not in (None, "") for key in required)

    async def safe_execute(self, turn: TurnContext, /, **kwargs: Any) -> str:
        """
        Safely execute the tool with error handling.

        Returns:
            String result of the tool execution, or error message if failed
        """
        try:
            if not self.validate_args(**kwargs):
                return f"Error: Invalid arguments for tool {self._name}"

            logger.info(f"Executing tool: {self._name} with args: {kwargs}")
            result = await self.execute(turn, **kwargs)
            logger.info(f"Tool {self._name} completed successfully")
            return self.truncate_output(result)

        except ToolExecutionError as e:
            logger.warning(f"Tool {self._name} failed: {e.message}")
            return f"Error: {e.message}"
        except Exception as e:
            error_msg = f"Error executing tool {self._name}: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return error_msg

    def truncate_output(self, output: str) -> str:
        if output is None:
            return ""
        if len(output) <= self._max_output_chars:
            return output
        logger.warning(
            f"Tool {self._name} output truncated: {len(output) - self._max_output_chars} chars removed"
        )
        return output[: self._max_output_chars] + "\n... [output truncated]"

    def to_openai_function(self) -> Dict[str, Any]:
        """Tool definition in OpenAI function-calling format."""
        return {
            "type": "function",
            "function": {
                "name": self._name,
                "description": self._description,
                "parameters": self.get_parameters_schema(),
            },
        }
