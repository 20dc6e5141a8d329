"""Flaky test fixer strategy.

Confirms a test is flaky from its run history, diagnoses the cause, then
iterates suggest-fix / apply / verify until the fix passes every verification
run or the fix budget is spent. A verified fix goes through human approval
before it is committed and proposed.
"""

from ..models.actions import ActionResult, AgentActionType, AgentPlan
from ..models.agent import AgentType
from ..models.context import AgentContext
from .base import AgentStrategy

FIX_ATTEMPTS = "fix_attempts"
FIX_PHASE = "fix_phase"
FIX_VERIFIED = "fix_verified"
LAST_VERIFICATION = "last_verification"

SUGGEST = "suggest"
APPLY = "apply"
VERIFY = "verify"


class FlakyTestFixerStrategy(AgentStrategy):
    """Stabilizes a flaky test and opens a pull request with the fix."""

    agent_type = AgentType.FLAKY_TEST_FIXER
    description = "Diagnose and fix a flaky test, verified over repeated runs"
    required_parameters = ("test_name", "test_file")
    default_max_iterations = 20

    def plan(self, context: AgentContext) -> AgentPlan:
        test_name: str = context.goal.get_parameter("test_name")
        test_file: str = context.goal.get_parameter("test_file")

        if not context.has_succeeded(AgentActionType.ANALYZE_TEST_STABILITY):
            return self.act(
                AgentActionType.ANALYZE_TEST_STABILITY,
                "Check run history to confirm the test is flaky",
                test_name=test_name,
            )

        if not context.get_work_product("is_flaky", False):
            return self.complete("Test is stable, nothing to fix")

        if not context.has_succeeded(AgentActionType.ANALYZE_FAILURE):
            return self.act(
                AgentActionType.ANALYZE_FAILURE,
                "Diagnose the cause of intermittent failures",
                test_name=test_name,
                failure_samples=context.get_work_product("failure_samples", []),
            )

        if not context.get_state(FIX_VERIFIED, False):
            return self._fix_step(context, test_file)

        if not context.has_succeeded(AgentActionType.REQUEST_APPROVAL):
            return self.act(
                AgentActionType.REQUEST_APPROVAL,
                "Request approval for the verified fix",
                test_name=test_name,
                test_file=test_file,
                fixed_code=context.get_work_product("fixed_code", ""),
                fix_description=context.get_work_product("fix_description", ""),
            )

        if not context.is_last_approval_granted():
            return self.abort("Flaky test fix was not approved")

        publish = self.publish_plan(
            context,
            branch_name=f"fix/agent-flaky-{self.slug(test_name)}",
            file_paths=[test_file],
            commit_message=f"fix: Stabilize flaky test {test_name}",
            pr_title=f"Stabilize flaky test {test_name}",
            pr_body=context.get_work_product("fix_description", "") or f"Fix for {test_name}",
        )
        return publish or self.complete("Fix verified and pull request created")

    def _fix_step(self, context: AgentContext, test_file: str) -> AgentPlan:
        phase = context.get_state(FIX_PHASE, SUGGEST)
        attempts = context.get_state(FIX_ATTEMPTS, 0)
        max_attempts = int(context.config.get_custom("max_fix_attempts", 3))

        if phase == SUGGEST:
            if attempts >= max_attempts:
                return self.abort(f"Fix not verified after {attempts} attempts")
            return self.act(
                AgentActionType.SUGGEST_FIX,
                f"Suggest fix (attempt {attempts + 1}/{max_attempts})",
                test_file=test_file,
                root_cause=context.get_work_product("root_cause", ""),
                previous_attempt=context.get_state(LAST_VERIFICATION),
            )

        if phase == APPLY:
            return self.act(
                AgentActionType.MODIFY_FILE,
                "Apply suggested fix",
                path=test_file,
                content=context.get_work_product("fixed_code", ""),
            )

        return self.act(
            AgentActionType.EXECUTE_TEST,
            "Verify fix over repeated runs",
            test_file=test_file,
            runs=int(context.config.get_custom("verification_runs", 5)),
        )

    def on_action_completed(
        self,
        context: AgentContext,
        plan: AgentPlan,
        result: ActionResult,
    ) -> None:
        if not result.success:
            return

        action = plan.action_type
        if action == AgentActionType.SUGGEST_FIX:
            context.put_state(FIX_ATTEMPTS, context.get_state(FIX_ATTEMPTS, 0) + 1)
            context.put_state(FIX_PHASE, APPLY)
        elif action == AgentActionType.MODIFY_FILE:
            context.put_state(FIX_PHASE, VERIFY)
        elif action == AgentActionType.EXECUTE_TEST:
            if result.output.get("test_passed"):
                context.put_state(FIX_VERIFIED, True)
            else:
                context.put_state(LAST_VERIFICATION, result.output.get("test_report", {}))
                context.put_state(FIX_PHASE, SUGGEST)

    def is_goal_achieved(self, context: AgentContext) -> bool:
        if context.has_succeeded(AgentActionType.ANALYZE_TEST_STABILITY) and not context.get_work_product(
            "is_flaky", False
        ):
            return True
        return context.has_succeeded(AgentActionType.CREATE_PULL_REQUEST)
