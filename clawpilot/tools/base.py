"""Tool contract shared by every model-callable tool."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class Tool(ABC):
    """A named operation the model may request during a turn.

    ``parameters_schema`` is a JSON schema object; the registry validates
    requested arguments against it before ``run`` is called.
    """

    name: str
    description: str
    parameters_schema: dict[str, Any]

    def accepts(self, argument: str) -> bool:
        return argument in self.parameters_schema.get("properties", {})

    def to_spec(self) -> dict[str, Any]:
        """OpenAI-style function declaration for this tool."""

        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters_schema,
            },
        }

    @abstractmethod
    async def run(self, **kwargs: Any) -> Any:
        """Execute with validated arguments and return a JSON-serializable result."""
