"""Alignment of flat batch-translation replies onto ordered segments."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

from .structures import Segment


logger = logging.getLogger(__name__)

FAILED_TRANSLATION = "[translation failed]"

_LINE_BREAKS = re.compile(r"\s*\n\s*")


@dataclass
class AlignmentReport:
    """Outcome of applying one reply."""

    sent: int
    applied: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)

    @property
    def shortfall(self) -> bool:
        return bool(self.failed)


def entry_indices(
    segments: Sequence[Segment],
    selected: Optional[Iterable[int]] = None,
) -> List[int]:
    """Return the original indices sent for translation, in original order.

    The whole list is sent when nothing is selected.
    """

    chosen = sorted(set(selected or ()))
    if not chosen:
        return list(range(len(segments)))
    for index in chosen:
        if index < 0 or index >= len(segments):
            raise IndexError(
                f"Selected row {index} is outside the {len(segments)} loaded segments."
            )
    return chosen


def build_payload(segments: Sequence[Segment], indices: Sequence[int]) -> str:
    """Join the entries' originals, one line per entry."""

    return "\n".join(
        _LINE_BREAKS.sub(" ", segments[index].original) for index in indices
    )


def split_reply(
    reply: Optional[str],
    *,
    block: bool = False,
    expected: Optional[int] = None,
) -> List[str]:
    """Split a reply into positional lines.

    Leading and inner empty lines are kept because they answer empty entries.
    Trailing empty lines are dropped while there are more lines than
    ``expected`` (all of them when ``expected`` is not given).
    """

    text = (reply or "").replace("\r\n", "\n")
    if block:
        stripped = text.strip()
        return [stripped] if stripped else []
    if not text:
        return []
    lines = text.split("\n")
    limit = 0 if expected is None else expected
    while len(lines) > limit and not lines[-1].strip():
        lines.pop()
    return lines


def apply_reply(
    segments: Sequence[Segment],
    reply: Optional[str],
    selected: Optional[Iterable[int]] = None,
    *,
    block: bool = False,
) -> Tuple[List[Segment], AlignmentReport]:
    """Map reply lines back onto the segments that were sent.

    Reply line ``i`` belongs to the ``i``-th sent entry. Entries without a
    reply line receive ``FAILED_TRANSLATION``; segments that were not sent
    are returned unchanged.
    """

    indices = entry_indices(segments, selected)
    lines = split_reply(reply, block=block, expected=len(indices))
    positions = {original: position for position, original in enumerate(indices)}

    report = AlignmentReport(sent=len(indices))
    updated: List[Segment] = []
    for index, segment in enumerate(segments):
        position = positions.get(index)
        if position is None:
            updated.append(segment)
        elif position < len(lines):
            updated.append(segment.with_translation(lines[position]))
            report.applied.append(index)
        else:
            updated.append(segment.with_translation(FAILED_TRANSLATION))
            report.failed.append(index)

    if report.failed:
        logger.warning(
            "Translation reply had %d line(s) for %d entries; %d marked as failed.",
            len(lines),
            len(indices),
            len(report.failed),
        )
    elif len(lines) > len(indices):
        logger.warning(
            "Translation reply had %d extra line(s); they were ignored.",
            len(lines) - len(indices),
        )
    return updated, report
