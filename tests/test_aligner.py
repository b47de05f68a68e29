import pytest

from bitext.aligner import (
    FAILED_TRANSLATION,
    apply_reply,
    build_payload,
    entry_indices,
    split_reply,
)
from bitext.structures import Segment


@pytest.fixture
def segments():
    return [
        Segment("a", "One", "uno-old"),
        Segment("b", "Two"),
        Segment("c", "Three"),
        Segment("d", "Four", "cuatro-old"),
    ]


def test_full_reply_fills_every_segment(segments):
    updated, report = apply_reply(segments, "Un\nDeux\nTrois\nQuatre")

    assert [s.translation for s in updated] == ["Un", "Deux", "Trois", "Quatre"]
    assert [s.key for s in updated] == ["a", "b", "c", "d"]
    assert report.applied == [0, 1, 2, 3]
    assert not report.shortfall


def test_subset_reply_only_touches_selected_rows(segments):
    updated, report = apply_reply(segments, "Deux\nQuatre", selected={3, 1})

    assert [s.translation for s in updated] == ["uno-old", "Deux", "", "Quatre"]
    assert report.sent == 2
    assert report.applied == [1, 3]


def test_short_reply_marks_missing_rows_as_failed(segments):
    updated, report = apply_reply(segments, "Un\nDeux")

    assert [s.translation for s in updated] == [
        "Un",
        "Deux",
        FAILED_TRANSLATION,
        FAILED_TRANSLATION,
    ]
    assert report.failed == [2, 3]
    assert report.shortfall


def test_empty_reply_fails_every_sent_row(segments):
    updated, report = apply_reply(segments, "", selected=[2])

    assert updated[2].translation == FAILED_TRANSLATION
    assert updated[0].translation == "uno-old"
    assert report.failed == [2]


def test_extra_reply_lines_are_ignored(segments):
    updated, report = apply_reply(segments[:2], "Un\nDeux\nTrois")

    assert [s.translation for s in updated] == ["Un", "Deux"]
    assert not report.shortfall


def test_input_list_is_not_mutated(segments):
    apply_reply(segments, "X\nY\nZ\nW")
    assert segments[0].translation == "uno-old"
    assert segments[1].translation == ""


def test_block_reply_is_kept_whole():
    segments = [Segment("document", "Para one.\n\nPara two.")]

    updated, report = apply_reply(segments, "\nUn.\n\nDeux.\n", block=True)

    assert updated[0].translation == "Un.\n\nDeux."
    assert report.applied == [0]


def test_reply_line_endings_are_normalised():
    assert split_reply("a\r\nb\r\n") == ["a", "b"]
    assert split_reply("\n\n") == []
    assert split_reply(None) == []
    assert split_reply("a\n\nb") == ["a", "", "b"]


def test_leading_and_inner_empty_lines_keep_their_position():
    assert split_reply("\nb\n", expected=2) == ["", "b"]
    assert split_reply("a\n\n\n\n", expected=2) == ["a", ""]
    assert split_reply("a\n\n", expected=3) == ["a", "", ""]


def test_empty_original_in_first_position_stays_aligned():
    segments = [Segment("a", ""), Segment("b", "Hello"), Segment("c", "World")]
    payload = build_payload(segments, entry_indices(segments))
    assert payload == "\nHello\nWorld"

    updated, report = apply_reply(segments, payload)

    assert [s.translation for s in updated] == ["", "Hello", "World"]
    assert report.applied == [0, 1, 2]
    assert not report.shortfall


def test_payload_has_one_line_per_entry():
    segments = [Segment("a", "First\n  line"), Segment("b", "Second"), Segment("c", "Third")]

    assert build_payload(segments, [0, 2]) == "First line\nThird"


def test_entry_indices_defaults_to_all_rows(segments):
    assert entry_indices(segments) == [0, 1, 2, 3]
    assert entry_indices(segments, []) == [0, 1, 2, 3]
    assert entry_indices(segments, [2, 0, 2]) == [0, 2]


@pytest.mark.parametrize("selected", [[4], [-1], [0, 9]])
def test_out_of_range_selection_raises(segments, selected):
    with pytest.raises(IndexError):
        entry_indices(segments, selected)
    with pytest.raises(IndexError):
        apply_reply(segments, "x", selected=selected)


def test_three_line_reply_maps_positionally():
    segments = [Segment(k, k.upper()) for k in "xyz"]

    updated, _ = apply_reply(segments, "1\n2\n3")

    assert [s.translation for s in updated] == ["1", "2", "3"]


def test_subset_of_five_receives_lines_in_original_order():
    segments = [Segment(str(i), f"orig {i}", f"old {i}") for i in range(5)]

    updated, _ = apply_reply(segments, "first\nsecond", selected=[3, 1])

    assert [s.translation for s in updated] == [
        "old 0",
        "first",
        "old 2",
        "second",
        "old 4",
    ]


def test_two_selected_with_one_line_fails_the_second():
    segments = [Segment(str(i), f"orig {i}") for i in range(4)]

    updated, report = apply_reply(segments, "only", selected=[0, 2])

    assert updated[0].translation == "only"
    assert updated[2].translation == FAILED_TRANSLATION
    assert report.failed == [2]
