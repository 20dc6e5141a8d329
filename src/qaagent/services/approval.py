"""Approval collaborator contract.

The engine only creates approval requests. Delivery to reviewers and the
review UI live outside; the collaborator reports the decision back through
``AgentOrchestrator.resume``.
"""

from abc import ABC, abstractmethod
from typing import Any


class ApprovalGateway(ABC):
    """Creates human approval requests for suspended executions."""

    @abstractmethod
    async def create_approval_request(
        self,
        content: dict[str, Any],
        metadata: dict[str, Any],
    ) -> str:
        """Create an approval request.

        Args:
            content: What the reviewer is approving (generated code, diff, PR plan)
            metadata: execution_id, agent_type, iteration and the gated action

        Returns:
            Approval request identifier
        """
