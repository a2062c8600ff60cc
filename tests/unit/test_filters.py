"""Unit tests for push trigger filter patterns."""

from __future__ import annotations

import pytest

from crate_ci_gate.workflow.events import PushEvent
from crate_ci_gate.workflow.filters import DEFAULT_TRIGGER, RefFilter, TriggerFilter, pattern_matches


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("v1.2.3", True),
        ("v10.0", True),
        ("v1.", True),
        ("v1.2.3-rc.1", True),
        ("nightly", False),
        ("v.1", False),
        ("1.2.3", False),
        ("v1", False),
        ("v1.2/x", False),
    ],
)
def test_version_tag_pattern(name: str, expected: bool) -> None:
    assert pattern_matches("v[0-9]+.*", name) is expected


def test_double_star_crosses_slashes_but_single_star_does_not() -> None:
    assert pattern_matches("**", "feature/deep/x")
    assert pattern_matches("feature/**", "feature/deep/x")
    assert pattern_matches("feature/*", "feature/x")
    assert not pattern_matches("feature/*", "feature/deep/x")
    assert not pattern_matches("*", "feature/x")


def test_question_mark_makes_preceding_character_optional() -> None:
    assert pattern_matches("colou?r", "color")
    assert pattern_matches("colou?r", "colour")
    assert not pattern_matches("colou?r", "colouur")


def test_escaped_characters_match_literally() -> None:
    assert pattern_matches(r"release\*", "release*")
    assert not pattern_matches(r"release\*", "release-1")


def test_dot_is_literal() -> None:
    assert not pattern_matches("v1.0", "v1x0")


def test_negation_last_match_wins() -> None:
    flt = RefFilter(("releases/**", "!releases/**-alpha", "releases/keep-alpha"))
    assert flt.admits("releases/1.0")
    assert not flt.admits("releases/1.0-alpha")
    assert flt.admits("releases/keep-alpha")
    assert not flt.admits("main")


def test_ignore_filter_excludes_matches() -> None:
    flt = RefFilter(("dependabot/**",), ignore=True)
    assert flt.admits("main")
    assert not flt.admits("dependabot/cargo/serde")


def test_default_trigger_admits_branches_and_version_tags() -> None:
    assert DEFAULT_TRIGGER.admits(PushEvent.from_ref("refs/heads/main"))
    assert DEFAULT_TRIGGER.admits(PushEvent.from_ref("refs/heads/feature/x"))
    assert DEFAULT_TRIGGER.admits(PushEvent.from_ref("refs/tags/v1.2.3"))
    assert not DEFAULT_TRIGGER.admits(PushEvent.from_ref("refs/tags/nightly"))


def test_filter_on_one_kind_excludes_the_other_kind() -> None:
    branches_only = TriggerFilter(branches=RefFilter(("**",)))
    assert branches_only.admits(PushEvent.from_ref("refs/heads/main"))
    assert not branches_only.admits(PushEvent.from_ref("refs/tags/v1.0.0"))


def test_no_filters_admit_everything() -> None:
    assert TriggerFilter().admits(PushEvent.from_ref("refs/tags/nightly"))
