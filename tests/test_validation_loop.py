"""
Validation Loop Tests
=====================
Bounded judge turns, feedback carry-over, deterministic fallback and the
degraded modes (judge unavailable, normalizer failure).
"""
import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from autofix.agents.fix_applier import FixApplier
from autofix.agents.fix_judge import ValidationLoop
from autofix.core.errors import CompletionError, FixApplicationError
from autofix.models.fix_candidate import AppliedFix, FixCandidate, ModelAppliedFix, ValidationVerdict
from autofix.services.normalizer import NormalizeResult

ORIGINAL = "a\nb\nc\n"
PASS = ValidationVerdict(score="pass")
FAIL = ValidationVerdict(score="fail", issues=["wrong place"], feedback="edit line 2 only")


def _candidate(start=2, end=2, old="b"):
    return FixCandidate(file_path="src/app.js", line_start=start, line_end=end, old_code=old, new_code="B")


def _judge(*verdicts):
    judge = AsyncMock()
    judge.complete.side_effect = list(verdicts)
    return judge


def test_pass_on_first_turn():
    async def run_test():
        loop = ValidationLoop(FixApplier(), _judge(PASS))
        validated = await loop.run(ORIGINAL, _candidate())
        assert validated.content == "a\nB\nc\n"
        assert validated.turns == 1
        assert validated.used_fallback is False

    asyncio.run(run_test())


def test_always_fail_judge_calls_applier_exactly_three_times():
    async def run_test():
        applier = MagicMock()
        applier.apply = AsyncMock(return_value=AppliedFix("a\nB\nc\n", 1))
        judge = _judge(FAIL, FAIL, FAIL)

        validated = await ValidationLoop(applier, judge, max_turns=3).run(ORIGINAL, _candidate())

        assert applier.apply.await_count == 3
        assert judge.complete.await_count == 3
        assert validated.used_fallback is True
        assert validated.tier == 1
        assert validated.content == "a\nB\nc\n"

    asyncio.run(run_test())


def test_fail_feedback_reaches_next_judge_prompt_only():
    async def run_test():
        judge = _judge(FAIL, PASS)
        candidate = _candidate()
        validated = await ValidationLoop(FixApplier(), judge).run(ORIGINAL, candidate)

        assert validated.turns == 2
        first_prompt = judge.complete.await_args_list[0].args[0]
        second_prompt = judge.complete.await_args_list[1].args[0]
        assert "edit line 2 only" not in first_prompt
        assert "edit line 2 only" in second_prompt
        assert candidate.new_code == "B"

    asyncio.run(run_test())


def test_exhausted_model_tier_falls_back_to_deterministic_or_raises():
    async def run_test():
        completion = AsyncMock()
        completion.complete.side_effect = [
            ModelAppliedFix(fixed_content="x = 3\nx = 1\n", changes_made="-"), FAIL,
            ModelAppliedFix(fixed_content="x = 3\nx = 1\n", changes_made="-"), FAIL,
        ]
        loop = ValidationLoop(FixApplier(completion), completion, max_turns=2)
        candidate = FixCandidate(file_path="a.py", old_code="x = 1", new_code="x = 3")
        with pytest.raises(FixApplicationError):
            await loop.run("x = 1\nx = 1\n", candidate)
        assert completion.complete.await_count == 4

    asyncio.run(run_test())


def test_judge_unavailable_accepts_candidate():
    async def run_test():
        loop = ValidationLoop(FixApplier(), _judge(CompletionError("no provider")))
        validated = await loop.run(ORIGINAL, _candidate())
        assert validated.content == "a\nB\nc\n"
        assert validated.turns == 1
        assert validated.verdict is None

    asyncio.run(run_test())


def test_normalized_content_is_judged_and_returned():
    async def run_test():
        normalizer = MagicMock()
        normalizer.normalize = AsyncMock(return_value=NormalizeResult("a\nB;\nc\n", [], True))
        judge = _judge(PASS)
        validated = await ValidationLoop(FixApplier(), judge, normalizer).run(ORIGINAL, _candidate())
        assert validated.content == "a\nB;\nc\n"
        assert "B;" in judge.complete.await_args.args[0]

    asyncio.run(run_test())


def test_normalizer_failure_uses_unformatted_content():
    async def run_test():
        normalizer = MagicMock()
        normalizer.normalize = AsyncMock(side_effect=RuntimeError("prettier missing"))
        validated = await ValidationLoop(FixApplier(), _judge(PASS), normalizer).run(ORIGINAL, _candidate())
        assert validated.content == "a\nB\nc\n"

    asyncio.run(run_test())


def test_max_turns_must_be_positive():
    with pytest.raises(ValueError):
        ValidationLoop(FixApplier(), AsyncMock(), max_turns=0)
