"""Self-healing strategy for tests broken by a changed locator.

Healing loop: extract the broken locator from the failure, collect candidate
locators from the element registry, and for each candidate apply it to the
test file and re-run the test. When the registry's candidates are used up the
AI collaborator is asked once for more. A verified locator is written back to
the registry and proposed as a pull request after human approval.
"""

from ..models.actions import ActionResult, AgentActionType, AgentPlan
from ..models.agent import AgentType
from ..models.context import AgentContext
from .base import AgentStrategy

CANDIDATES = "healing_candidates"
CANDIDATE_INDEX = "healing_candidate_index"
PHASE = "healing_phase"
CURRENT_LOCATOR = "healing_current_locator"
HEALED_LOCATOR = "healed_locator"
DISCOVERY_DONE = "healing_discovery_done"

APPLY = "apply"
VERIFY = "verify"


class SelfHealingStrategy(AgentStrategy):
    """Repairs a test whose element locator no longer matches the page."""

    agent_type = AgentType.SELF_HEALING_TEST_FIXER
    description = "Heal a broken element locator and open a pull request with the fix"
    required_parameters = ("test_file", "error_message")
    default_max_iterations = 20

    def plan(self, context: AgentContext) -> AgentPlan:
        goal = context.goal
        test_file: str = goal.get_parameter("test_file")
        page_name = goal.get_parameter("page_name")

        broken = self._broken_locator(context)
        if broken is None:
            return self.act(
                AgentActionType.EXTRACT_BROKEN_LOCATOR,
                "Extract the failing locator from the error message",
                error_message=goal.get_parameter("error_message"),
            )

        if not context.has_succeeded(AgentActionType.QUERY_ELEMENT_REGISTRY):
            return self.act(
                AgentActionType.QUERY_ELEMENT_REGISTRY,
                "Look up known alternatives for the broken locator",
                locator=broken,
                page_name=page_name,
            )

        healed = context.get_state(HEALED_LOCATOR)
        if healed is None:
            return self._healing_step(context, broken, test_file, page_name)

        if not context.has_succeeded(AgentActionType.UPDATE_ELEMENT_REGISTRY):
            return self.act(
                AgentActionType.UPDATE_ELEMENT_REGISTRY,
                "Record the healed locator in the element registry",
                old_locator=broken,
                new_locator=healed,
                page_name=page_name,
            )

        if not context.has_succeeded(AgentActionType.REQUEST_APPROVAL):
            return self.act(
                AgentActionType.REQUEST_APPROVAL,
                "Request approval for the locator fix",
                test_file=test_file,
                old_locator=broken,
                new_locator=healed,
            )

        if not context.is_last_approval_granted():
            return self.abort("Locator fix was not approved")

        stem = test_file.rsplit("/", 1)[-1].split(".", 1)[0]
        publish = self.publish_plan(
            context,
            branch_name=f"fix/agent-heal-{self.slug(stem)}",
            file_paths=[test_file],
            commit_message=f"fix: Heal broken locator in {test_file}",
            pr_title=f"Heal broken locator in {stem}",
            pr_body=f"Replaced `{broken}` with `{healed}` in {test_file}.",
        )
        return publish or self.complete("Locator healed and pull request created")

    def _healing_step(
        self,
        context: AgentContext,
        broken: str,
        test_file: str,
        page_name: str | None,
    ) -> AgentPlan:
        candidates: list[str] = context.get_state(CANDIDATES, [])
        index: int = context.get_state(CANDIDATE_INDEX, 0)
        max_attempts = int(context.config.get_custom("max_healing_attempts", 5))

        if index < len(candidates) and index < max_attempts:
            candidate = candidates[index]
            if context.get_state(PHASE, APPLY) == APPLY:
                return self.act(
                    AgentActionType.MODIFY_FILE,
                    f"Try alternative locator {index + 1}: {candidate}",
                    path=test_file,
                    find=context.get_state(CURRENT_LOCATOR, broken),
                    replace=candidate,
                )
            return self.act(
                AgentActionType.EXECUTE_TEST,
                f"Verify alternative locator {candidate}",
                test_file=test_file,
            )

        if not context.get_state(DISCOVERY_DONE, False) and index < max_attempts:
            return self.act(
                AgentActionType.DISCOVER_LOCATOR,
                "Known alternatives exhausted, ask AI for new locators",
                broken_locator=broken,
                page_name=page_name,
                tried_locators=candidates,
            )

        return self.abort(f"No working locator found after {index} attempts")

    def on_action_completed(
        self,
        context: AgentContext,
        plan: AgentPlan,
        result: ActionResult,
    ) -> None:
        if not result.success:
            return

        action = plan.action_type
        if action == AgentActionType.QUERY_ELEMENT_REGISTRY:
            broken = self._broken_locator(context)
            alternatives = result.output.get("alternative_locators", [])
            context.put_state(CANDIDATES, _unique(alternatives, exclude={broken}))
            context.put_state(CANDIDATE_INDEX, 0)
            context.put_state(PHASE, APPLY)

        elif action == AgentActionType.MODIFY_FILE:
            context.put_state(CURRENT_LOCATOR, plan.parameters["replace"])
            context.put_state(PHASE, VERIFY)

        elif action == AgentActionType.EXECUTE_TEST:
            if result.output.get("test_passed"):
                context.put_state(HEALED_LOCATOR, context.get_state(CURRENT_LOCATOR))
            else:
                context.put_state(CANDIDATE_INDEX, context.get_state(CANDIDATE_INDEX, 0) + 1)
                context.put_state(PHASE, APPLY)

        elif action == AgentActionType.DISCOVER_LOCATOR:
            candidates = context.get_state(CANDIDATES, [])
            discovered = result.output.get("discovered_locators", [])
            context.put_state(
                CANDIDATES,
                candidates + _unique(discovered, exclude={self._broken_locator(context), *candidates}),
            )
            context.put_state(DISCOVERY_DONE, True)
            context.put_state(PHASE, APPLY)

    def is_goal_achieved(self, context: AgentContext) -> bool:
        return context.has_succeeded(AgentActionType.CREATE_PULL_REQUEST)

    @staticmethod
    def _broken_locator(context: AgentContext) -> str | None:
        return context.goal.get_parameter("broken_locator") or context.get_work_product(
            "broken_locator"
        )


def _unique(values: list[str], exclude: set[str | None]) -> list[str]:
    seen: set[str] = set()
    result = []
    for value in values:
        if value and value not in exclude and value not in seen:
            seen.add(value)
            result.append(value)
    return result
