from __future__ import annotations

from ttr.body import (
    extract_ticket_marker,
    format_dependencies_section,
    format_issue_body,
    has_ticket_marker,
    ticket_marker,
)


def test_body_layout_without_deps():
    body = format_issue_body("ttr-1", "Do the thing.")
    assert body == (
        "<!-- ticket:ttr-1 -->\n\nDo the thing.\n\n---\n<sub>Synced from ticket `ttr-1`</sub>"
    )


def test_body_layout_with_deps():
    body = format_issue_body("ttr-2", "Body", ["ttr-1", "ttr-9"], {"ttr-1": 12})
    assert body == (
        "<!-- ticket:ttr-2 -->\n\nBody"
        "\n\n---\n**Depends on:** #12, `ttr-9` (not synced)"
        "\n\n---\n<sub>Synced from ticket `ttr-2`</sub>"
    )


def test_dependency_section_resolves_numbers():
    assert format_dependencies_section(["a", "b"], {"a": 1, "b": 2}) == "**Depends on:** #1, #2"


def test_marker_round_trip():
    body = format_issue_body("ttr-abc", "")
    assert body.startswith(ticket_marker("ttr-abc"))
    assert extract_ticket_marker(body) == "ttr-abc"
    assert has_ticket_marker(body, "ttr-abc")
    assert not has_ticket_marker(body, "ttr-ab")


def test_marker_found_anywhere():
    assert extract_ticket_marker("edited by hand\n<!-- ticket:x-1 --> rest") == "x-1"


def test_marker_missing_or_unterminated():
    assert extract_ticket_marker("") is None
    assert extract_ticket_marker("no marker here") is None
    assert extract_ticket_marker("<!-- ticket:x-1") is None
    assert not has_ticket_marker(None, "x-1")  # type: ignore[arg-type]
