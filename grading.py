"""Challenge grading on top of the normalizer and the simulator."""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from interpreter import SimulationResult, simulate
from normalizer import normalize_code


class ChallengeKind(str, Enum):
    code = "code"
    choice = "choice"
    arrange = "arrange"
    debug = "debug"


TEXTUAL_KINDS = {ChallengeKind.choice, ChallengeKind.arrange}


@dataclass(frozen=True)
class Challenge:
    kind: ChallengeKind
    target_code: str
    starter_code: Optional[str] = None
    buggy_code: Optional[str] = None
    choices: List[str] = field(default_factory=list)
    fragments: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class GradeResult:
    solved: bool
    stdout: str = ""
    stderr: str = ""


def build_submission(
    challenge: Challenge,
    *,
    user_input: str = "",
    selected_choice: str = "",
    arranged_fragments: Sequence[str] = (),
) -> str:
    if challenge.kind == ChallengeKind.arrange:
        return " ".join(arranged_fragments).strip()
    if challenge.kind == ChallengeKind.choice:
        return selected_choice.strip()
    return user_input.strip()


def outputs_equivalent(first: SimulationResult, second: SimulationResult) -> bool:
    """Two clean runs are equivalent when their output matches after trimming."""
    if not first.ok or not second.ok:
        return False
    return first.stdout.strip() == second.stdout.strip()


def grade_submission(challenge: Challenge, submitted: str) -> GradeResult:
    normalized_submitted = normalize_code(submitted)
    normalized_target = normalize_code(challenge.target_code)

    if challenge.kind in TEXTUAL_KINDS:
        return GradeResult(solved=normalized_submitted == normalized_target)

    submitted_run = simulate(submitted)
    expected_run = simulate(challenge.target_code)
    solved = outputs_equivalent(submitted_run, expected_run) and (
        submitted_run.stdout.strip() != "" or normalized_submitted == normalized_target
    )
    return GradeResult(solved=solved, stdout=submitted_run.stdout, stderr=submitted_run.stderr)
