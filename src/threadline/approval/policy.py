"""Layered tool approval policy.

Every tool call is checked against these tiers; the first one that matches
decides:

1. ``disable_all_tools``               -> DENY
2. tool in ``disable_tools``           -> DENY
3. tool in ``auto_approve_tools``      -> ALLOW_ONCE
   (or ``disable_tool_guardrails``)
4. ``allow_non_destructive_tools`` and
   the tool is annotated read-only     -> ALLOW_ONCE
5. explicit per-tool policy            -> allow / deny / ask every time
6. otherwise ask the approval callback, unless the tool was already
   approved for the whole session

Only ALLOW_SESSION answers are remembered, per tool name, for the lifetime of
the PolicyEngine. ALLOW_ONCE and DENY are asked again next time.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from threadline.approval.types import (
    ApprovalCallback,
    ApprovalCallbackMissingError,
    ApprovalDecision,
    ToolPolicy,
)
from threadline.config.schema import ToolPolicyConfig
from threadline.logging import get_logger

if TYPE_CHECKING:
    from threadline.config.schema import Config
    from threadline.tools.tool import Tool

log = get_logger("approval.policy")


def _policies_from_config(config: ToolPolicyConfig) -> dict[str, ToolPolicy]:
    policies: dict[str, ToolPolicy] = {}
    for tool_name, value in config.policies.items():
        try:
            policies[tool_name] = ToolPolicy(value)
        except ValueError:
            log.warning("Invalid policy '%s' for tool '%s', ignoring", value, tool_name)
    return policies


class PolicyEngine:
    """Evaluates tool calls against the layered policy for one session.

    Attributes:
        config: Global policy flags and lists.
        callback: Interactive approval collaborator, if any.
    """

    def __init__(
        self,
        config: ToolPolicyConfig | None = None,
        callback: ApprovalCallback | None = None,
    ) -> None:
        self.config = config or ToolPolicyConfig()
        self.callback = callback
        self._config_policies = _policies_from_config(self.config)
        self._session_policies: dict[str, ToolPolicy] = {}
        self._session_approvals: dict[str, ApprovalDecision] = {}

    @classmethod
    def from_config(
        cls, config: Config, callback: ApprovalCallback | None = None
    ) -> PolicyEngine:
        return cls(config.tools, callback)

    def reload(self, config: ToolPolicyConfig) -> None:
        """Swap in new policy config, keeping session overrides and approvals."""
        self.config = config
        self._config_policies = _policies_from_config(config)
        log.debug("Tool policy reloaded: %d per-tool policies", len(self._config_policies))

    # -------------------------------------------------------------------------
    # Per-tool overrides and session cache
    # -------------------------------------------------------------------------

    def set_tool_policy(self, tool_name: str, policy: ToolPolicy | str) -> None:
        self._session_policies[tool_name] = ToolPolicy(policy)

    def clear_tool_policy(self, tool_name: str) -> None:
        self._session_policies.pop(tool_name, None)

    def get_tool_policy(self, tool_name: str) -> ToolPolicy | None:
        """Effective override for a tool; session overrides beat config."""
        if tool_name in self._session_policies:
            return self._session_policies[tool_name]
        return self._config_policies.get(tool_name)

    def session_approvals(self) -> dict[str, ApprovalDecision]:
        return dict(self._session_approvals)

    def approve_for_session(self, tool_name: str) -> None:
        """Skip the approval prompt for this tool until the engine goes away."""
        self._session_approvals[tool_name] = ApprovalDecision.ALLOW_SESSION

    def clear_session_cache(self) -> None:
        self._session_approvals.clear()

    # -------------------------------------------------------------------------
    # Evaluation
    # -------------------------------------------------------------------------

    def check(self, tool_name: str, tool: Tool | None = None) -> ApprovalDecision | None:
        """Apply the non-interactive tiers.

        Returns:
            The decision, or None when the interactive callback must be asked.
        """
        config = self.config

        if config.disable_all_tools:
            log.debug("Denied %s: all tools disabled", tool_name)
            return ApprovalDecision.DENY

        if tool_name in config.disable_tools:
            log.debug("Denied %s: tool disabled", tool_name)
            return ApprovalDecision.DENY

        if tool_name in config.auto_approve_tools or config.disable_tool_guardrails:
            log.debug("Allowed %s: auto-approved", tool_name)
            return ApprovalDecision.ALLOW_ONCE

        if config.allow_non_destructive_tools and tool is not None and tool.read_only:
            log.debug("Allowed %s: read-only tool", tool_name)
            return ApprovalDecision.ALLOW_ONCE

        policy = self.get_tool_policy(tool_name)
        if policy is ToolPolicy.ALLOW:
            return ApprovalDecision.ALLOW_ONCE
        if policy is ToolPolicy.DENY:
            log.debug("Denied %s: tool policy", tool_name)
            return ApprovalDecision.DENY
        if policy is ToolPolicy.REQUIRE_APPROVAL:
            # Explicit "ask every time" also bypasses the session cache
            return None

        return self._session_approvals.get(tool_name)

    async def evaluate(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        *,
        tool: Tool | None = None,
        tool_call_id: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ApprovalDecision:
        """Decide whether a tool call may run.

        Raises:
            ApprovalCallbackMissingError: Approval is needed but no callback is set.
            ApprovalError: Raised by the callback (e.g. no matching TOOL_CALL).
        """
        decision = self.check(tool_name, tool)
        if decision is not None:
            return decision

        if self.callback is None:
            raise ApprovalCallbackMissingError(tool_name)

        log.debug("Requesting interactive approval for %s (%s)", tool_name, tool_call_id)
        decision = await self.callback.request_approval(
            tool_name,
            arguments,
            tool_call_id=tool_call_id,
            cancel_event=cancel_event,
        )
        decision = ApprovalDecision(decision)

        if decision is ApprovalDecision.ALLOW_SESSION:
            self.approve_for_session(tool_name)
            log.info("Tool %s approved for the rest of the session", tool_name)

        return decision
