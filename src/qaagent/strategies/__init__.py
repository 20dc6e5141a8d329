"""Agent strategies: per agent type decision logic over the shared engine loop."""

from .base import AgentStrategy
from .flaky_test_fixer import FlakyTestFixerStrategy
from .self_healing import SelfHealingStrategy
from .test_generator import PlaywrightTestGeneratorStrategy


def default_strategies() -> list[AgentStrategy]:
    """One instance of every shipped strategy."""
    return [
        PlaywrightTestGeneratorStrategy(),
        SelfHealingStrategy(),
        FlakyTestFixerStrategy(),
    ]


__all__ = [
    "AgentStrategy",
    "FlakyTestFixerStrategy",
    "PlaywrightTestGeneratorStrategy",
    "SelfHealingStrategy",
    "default_strategies",
]
