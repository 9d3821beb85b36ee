import pytest
from pydantic import ValidationError

from autofix.llm.prompts import build_judge_prompt, locate_line_range, numbered_window
from autofix.models.fix_candidate import FixCandidate
from autofix.models.incident import AdvisoryDetails, IncidentRecord
from autofix.models.repository import RepositoryHandle


def test_record_id_defaults_to_identifier():
    incident = IncidentRecord(identifier="err_1", kind="error")
    assert incident.record_id == "err_1"
    assert IncidentRecord(identifier="err_1", kind="error", record_id="rec_9").record_id == "rec_9"


def test_incident_is_frozen():
    incident = IncidentRecord(identifier="err_1", kind="error")
    with pytest.raises(ValidationError):
        incident.message = "changed"


def test_vulnerability_requires_advisory():
    with pytest.raises(ValidationError):
        IncidentRecord(identifier="CVE-1", kind="vulnerability")
    incident = IncidentRecord(identifier="CVE-1", kind="vulnerability", advisory=AdvisoryDetails(package_name="lodash"))
    assert incident.display_title == "lodash"


def test_repository_handle_hides_token():
    handle = RepositoryHandle(owner="octo", repo="shop", token="ghs_secret")
    assert "ghs_secret" not in repr(handle)
    assert handle.with_default_branch("main").default_branch == "main"
    assert handle.default_branch == ""


def test_numbered_window_clamps():
    assert numbered_window("a\nb\nc", -3, 2) == "1: a\n2: b"
    assert numbered_window("a\nb\nc", 2, 10) == "3: c"


def test_locate_line_range_searches_when_no_range():
    content = "one\ntwo\nthree\nfour\n"
    candidate = FixCandidate(file_path="f", old_code="three\nfour", new_code="x")
    assert locate_line_range(content, candidate) == (3, 4)
    missing = FixCandidate(file_path="f", old_code="zzz", new_code="x")
    assert locate_line_range(content, missing) == (1, 1)


def test_judge_prompt_window_is_padded_and_stretched():
    original = "\n".join(f"line {i}" for i in range(1, 31))
    candidate = FixCandidate(file_path="f.js", line_start=15, line_end=15, old_code="line 15",
                             new_code="line 15a\nline 15b\nline 15c")
    updated = original.replace("line 15", "line 15a\nline 15b\nline 15c", 1)
    prompt = build_judge_prompt(original, updated, candidate)

    original_section = prompt.split("## Original File Context")[1].split("## Applied Result Context")[0]
    assert "10: line 10" in original_section
    assert "20: line 20" in original_section
    assert "9: line 9" not in original_section
    assert "21: line 21" not in original_section

    applied_section = prompt.split("## Applied Result Context")[1]
    assert "22: line 20" in applied_section
    assert "## Previous Feedback" not in prompt

    with_feedback = build_judge_prompt(original, updated, candidate, previous_feedback="only touch line 15")
    assert "## Previous Feedback\n\nonly touch line 15" in with_feedback
