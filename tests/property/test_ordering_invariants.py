"""Property-based tests for listener ordering and user agent classification.

These tests verify properties that hold for every input: priority ordering is
a stable sort by rank that respects relative constraints, and user agent
classification always produces a usable browser name and version.
"""

from __future__ import annotations

import pytest
from hypothesis import given, strategies as st

from testem_coverage.core.events import order_by_priority
from testem_coverage.core.receiver import build_coverage_filename, ua_match
from testem_coverage.types import BrowserInfo, Priority

KNOWN_BROWSERS = {"chrome", "webkit", "opera", "msie", "mozilla", "unknown"}

absolute_priority = st.one_of(
    st.none(),
    st.sampled_from(["first", "last"]),
    st.integers(min_value=-1000, max_value=1000),
)


def _rank(priority: Priority) -> float:
    if priority == "first":
        return float("-inf")
    if priority == "last":
        return float("inf")
    if priority is None:
        return 0.0
    return -float(priority)


@st.composite
def after_chains(draw: st.DrawFn) -> list[Priority]:
    """Priorities where some items are constrained to run after an earlier item."""
    count = draw(st.integers(min_value=1, max_value=12))
    priorities: list[Priority] = []
    for index in range(count):
        if index > 0 and draw(st.booleans()):
            target = draw(st.integers(min_value=0, max_value=index - 1))
            priorities.append(f"after:n{target}")
        else:
            priorities.append(draw(absolute_priority))
    return priorities


@pytest.mark.property
class TestOrderingInvariants:
    """Property-based tests for order_by_priority."""

    @given(st.lists(absolute_priority, max_size=20))
    def test_absolute_priorities_are_a_stable_sort_by_rank(self, priorities: list[Priority]) -> None:
        """Property: without relative tags, order is rank then declaration order."""
        indexes = list(range(len(priorities)))
        names = [f"n{i}" for i in indexes]

        ordered = order_by_priority(indexes, names, priorities)

        assert ordered == sorted(indexes, key=lambda i: (_rank(priorities[i]), i))

    @given(after_chains())
    def test_after_constraints_are_respected(self, priorities: list[Priority]) -> None:
        """Property: every item runs after the item it names, and nothing is lost."""
        indexes = list(range(len(priorities)))
        names = [f"n{i}" for i in indexes]

        ordered = order_by_priority(indexes, names, priorities)

        assert sorted(ordered) == indexes
        position = {item: pos for pos, item in enumerate(ordered)}
        for index, priority in enumerate(priorities):
            if isinstance(priority, str) and priority.startswith("after:"):
                target = int(priority.removeprefix("after:n"))
                assert position[target] < position[index]


@pytest.mark.property
class TestUserAgentInvariants:
    """Property-based tests for ua_match."""

    @given(st.text(max_size=200))
    def test_classification_is_total(self, user_agent: str) -> None:
        """Property: any string yields a known browser name and a non-empty version."""
        browser = ua_match(user_agent)

        assert browser.name in KNOWN_BROWSERS
        assert browser.version

    @given(
        st.sampled_from(sorted(KNOWN_BROWSERS)),
        st.from_regex(r"[0-9]+(\.[0-9]+){0,3}", fullmatch=True),
        st.integers(min_value=0, max_value=10000),
    )
    def test_filenames_are_json_files_naming_the_browser(self, name: str, version: str, suffix: int) -> None:
        """Property: coverage file names carry browser, run and suffix."""
        filename = build_coverage_filename(BrowserInfo(name, version), "index.html", "run1", suffix)

        assert filename.startswith(f"coverage-{name}-{version}-index.html-run1-")
        assert filename.endswith(f"-{suffix}.json")
