"""
qaagent - autonomous agent execution engine.

Runs long-lived, goal-directed agents (test generation, self-healing,
flaky-test repair) that act through a registry of tools, persist their
working state outside the process and pause at human approval gates.

Key Components:
- Tool Registry: action-type keyed tools with parameter validation
- Context Store: Redis-backed, TTL-bound per-execution working state
- Execution Ledger: durable execution records and append-only action history
- Strategies: per agent type decision logic over a shared iteration engine
- Orchestrator: creates, stops, resumes and recovers executions
"""

__version__ = "0.1.0"
