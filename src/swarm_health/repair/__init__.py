"""
Code repair: deterministic patterns (Tier 1) and AI-assisted patches (Tier 2).

Exports:
    CodeRepairEngine: Orchestrates both tiers and the safe apply path
    PatternLibrary: Tier 1 catalog with per-pattern hourly caps
    RepairLLM: Provider switchboard for Tier 2
    SyntaxChecker: Syntax-only gate for patched files
"""

from swarm_health.repair.engine import CodeRepairEngine
from swarm_health.repair.llm import (
    AnthropicProvider,
    OpenAIProvider,
    RepairLLM,
    build_repair_llm,
)
from swarm_health.repair.patterns import PatternLibrary
from swarm_health.repair.syntax import SyntaxChecker

__all__ = [
    "AnthropicProvider",
    "CodeRepairEngine",
    "OpenAIProvider",
    "PatternLibrary",
    "RepairLLM",
    "SyntaxChecker",
    "build_repair_llm",
]
