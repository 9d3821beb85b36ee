"""
Fix Applier Tests
=================
Tier ordering, ambiguity refusal, whitespace tolerance and the
model-assisted fallback. The completion service is always mocked.
"""
import asyncio

import pytest
from unittest.mock import AsyncMock, patch

from autofix.agents.fix_applier import FixApplier, normalize_whitespace
from autofix.core.errors import CompletionError, FixApplicationError
from autofix.models.fix_candidate import FixCandidate, ModelAppliedFix


def _candidate(old, new, start=0, end=0, path="src/app.js"):
    return FixCandidate(file_path=path, line_start=start, line_end=end, old_code=old, new_code=new)


def _completion(fixed_content="MODEL", side_effect=None):
    completion = AsyncMock()
    if side_effect is not None:
        completion.complete.side_effect = side_effect
    else:
        completion.complete.return_value = ModelAppliedFix(fixed_content=fixed_content, changes_made="changed")
    return completion


def test_normalize_whitespace_collapses_runs():
    assert normalize_whitespace("  a\n\t b   c ") == "a b c"


def test_tier1_replaces_exact_line_range():
    original = "a\nb\nc\n"
    applier = FixApplier()
    result = applier.apply_line_range(original, _candidate("b", "B", 2, 2))
    assert result == "a\nB\nc\n"


def test_tier1_tolerates_indentation_differences():
    original = "function f() {\n    return x.y;\n}\n"
    result = FixApplier().apply_line_range(original, _candidate("return   x.y;", "    return x?.y;", 2, 2))
    assert result == "function f() {\n    return x?.y;\n}\n"


def test_tier1_declines_on_mismatch_or_out_of_bounds():
    applier = FixApplier()
    assert applier.apply_line_range("a\nb\nc\n", _candidate("z", "Z", 2, 2)) is None
    assert applier.apply_line_range("a\nb\nc\n", _candidate("b", "B", 7, 9)) is None
    assert applier.apply_line_range("a\nb\nc\n", _candidate("b", "B")) is None


def test_scenario_line_exact_then_string_search():
    """old 'b' at line 2 → tier 1; same candidate with a wrong line range → tier 2."""
    async def run_test():
        applier = FixApplier()
        first = await applier.apply("a\nb\nc\n", _candidate("b", "B", 2, 2))
        assert (first.content, first.tier) == ("a\nB\nc\n", 1)

        second = await applier.apply("a\nb\nc\n", _candidate("b", "B", 3, 3))
        assert (second.content, second.tier) == ("a\nB\nc\n", 2)

    asyncio.run(run_test())


def test_later_tiers_not_consulted_when_line_exact_matches():
    async def run_test():
        completion = _completion()
        applier = FixApplier(completion)
        with patch.object(FixApplier, "apply_string_search") as string_search:
            result = await applier.apply("a\nb\nc\n", _candidate("b", "B", 2, 2))
        assert result.tier == 1
        string_search.assert_not_called()
        completion.complete.assert_not_awaited()

    asyncio.run(run_test())


def test_tier2_refuses_ambiguous_match():
    original = "x = 1\ny = 2\nx = 1\n"
    assert FixApplier().apply_string_search(original, _candidate("x = 1", "x = 3")) is None


def test_ambiguous_candidate_falls_through_to_model():
    async def run_test():
        completion = _completion(fixed_content="x = 3\ny = 2\nx = 1\n")
        applier = FixApplier(completion)
        applied = await applier.apply("x = 1\ny = 2\nx = 1\n", _candidate("x = 1", "x = 3"))
        assert applied.tier == 3
        assert applied.content == "x = 3\ny = 2\nx = 1\n"
        assert completion.complete.await_args.kwargs["fast"] is True

    asyncio.run(run_test())


def test_tier2_whitespace_tolerant_match():
    original = "if (user &&\n      user.name) {\n  go();\n}\n"
    result = FixApplier().apply_string_search(original, _candidate("if (user && user.name) {", "if (user?.name) {"))
    assert result == "if (user?.name) {\n  go();\n}\n"


def test_tier3_not_called_when_deterministic_tier_succeeds():
    async def run_test():
        completion = _completion()
        applied = await FixApplier(completion).apply("a\nb\nc\n", _candidate("b", "B"))
        assert applied.tier == 2
        completion.complete.assert_not_awaited()

    asyncio.run(run_test())


def test_all_tiers_fail_raises():
    async def run_test():
        applier = FixApplier(_completion(side_effect=CompletionError("down")))
        with pytest.raises(FixApplicationError) as exc:
            await applier.apply("a\nb\nc\n", _candidate("missing", "x"))
        assert exc.value.file_path == "src/app.js"

    asyncio.run(run_test())


def test_empty_model_output_counts_as_failure():
    async def run_test():
        applier = FixApplier(_completion(fixed_content="   "))
        with pytest.raises(FixApplicationError):
            await applier.apply("a\n", _candidate("missing", "x"))

    asyncio.run(run_test())


def test_allow_model_false_skips_tier3():
    async def run_test():
        completion = _completion()
        with pytest.raises(FixApplicationError):
            await FixApplier(completion).apply("a\n", _candidate("missing", "x"), allow_model=False)
        completion.complete.assert_not_awaited()

    asyncio.run(run_test())


def test_same_inputs_same_output():
    async def run_test():
        applier = FixApplier()
        candidate = _candidate("b", "B", 2, 2)
        first = await applier.apply("a\nb\nc\n", candidate)
        second = await applier.apply("a\nb\nc\n", candidate)
        assert first == second

    asyncio.run(run_test())
