"""Collaborator client interfaces consumed by the built-in tools.

The engine never talks to the issue tracker, the AI provider, version control
or the test infrastructure directly. Host applications implement these
clients and hand them to ``register_builtin_tools``.
"""

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field


class AIResponse(BaseModel):
    """Structured response from the AI collaborator."""

    content: dict[str, Any] = Field(default_factory=dict, description="Parsed response payload")
    cost: float = Field(default=0.0, ge=0.0, description="Attributed spend in USD")
    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)


class IssueTrackerClient(ABC):
    @abstractmethod
    async def fetch_story(self, key: str) -> dict[str, Any]:
        """Fetch a story (summary, description, acceptance criteria)."""


class AIClient(ABC):
    @abstractmethod
    async def complete(self, task: str, payload: dict[str, Any]) -> AIResponse:
        """Run an AI task (``generate_test_code``, ``analyze_failure``, ...)."""


class VersionControlClient(ABC):
    """Version control operations.

    Each method returns a structured result with a ``success`` flag, the
    identifiers it produced and an ``error`` message on failure.
    """

    @abstractmethod
    async def create_branch(self, branch_name: str, base_branch: str | None = None) -> dict[str, Any]:
        ...

    @abstractmethod
    async def commit(self, branch_name: str, message: str, file_paths: list[str]) -> dict[str, Any]:
        ...

    @abstractmethod
    async def create_pull_request(self, branch_name: str, title: str, body: str) -> dict[str, Any]:
        ...


class WorkspaceClient(ABC):
    """Draft workspace for test sources."""

    @abstractmethod
    async def read_file(self, path: str) -> str:
        ...

    @abstractmethod
    async def write_file(self, path: str, content: str) -> None:
        ...


class TestRunnerClient(ABC):
    __test__ = False  # not a pytest class

    @abstractmethod
    async def run_test(self, test_file: str, runs: int = 1) -> dict[str, Any]:
        """Run a test file; returns ``passed``, ``pass_count``, ``runs`` and ``output``."""


class ElementRegistryClient(ABC):
    @abstractmethod
    async def find_alternatives(self, locator: str, page_name: str | None = None) -> list[str]:
        """Known alternative locators for an element, best first."""

    @abstractmethod
    async def update_locator(self, old_locator: str, new_locator: str, page_name: str | None = None) -> None:
        ...


class TestAnalyticsClient(ABC):
    __test__ = False  # not a pytest class

    @abstractmethod
    async def get_stability(self, test_name: str) -> dict[str, Any]:
        """Stability report: ``is_flaky``, ``flakiness_score``, ``failure_samples``."""
