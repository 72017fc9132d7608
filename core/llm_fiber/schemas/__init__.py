"""Schema definitions for run inputs."""

from llm_fiber.schemas.run import ChatMessage, RunInput

__all__ = ["ChatMessage", "RunInput"]
