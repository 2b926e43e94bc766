"""
Self-Heal Models
================
Pydantic records produced by the self-heal engine.

GranularFixAction:
    One independently revertible unit of change. ``apply`` is an async
    callable returning a FixResult; it is never run without a snapshot.

HealIteration:
    One diagnostics-driven round: how many errors were found before the
    round, how many files the fixer reported as fixed, whether the build
    passed afterwards, and one "<file>: fixed|<reason>" line per file.

SelfHealResult:
    Always returned, never raised. ``build_output`` / ``test_output`` keep
    only the tail of the final measurement.
"""
from dataclasses import dataclass
from typing import Awaitable, Callable, List

from pydantic import BaseModel, Field


class FixResult(BaseModel):
    action_id: str
    description: str = ""
    success: bool = False
    output: str = ""


@dataclass(frozen=True)
class GranularFixAction:
    id: str
    description: str
    apply: Callable[[], Awaitable[FixResult]]


class HealIteration(BaseModel):
    iteration: int
    errors_found: int = 0
    files_fixed: int = 0
    build_passed: bool = False
    errors: List[str] = Field(default_factory=list)


class SelfHealResult(BaseModel):
    applied_fixes: List[FixResult] = Field(default_factory=list)
    rolled_back_fixes: List[FixResult] = Field(default_factory=list)
    heal_iterations: List[HealIteration] = Field(default_factory=list)
    build_passed: bool = False
    tests_passed: bool = False
    build_output: str = ""
    test_output: str = ""
