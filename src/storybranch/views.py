"""Presentation projections of pages and stories.

Pure functions that turn stored state into rows for a UI or the CLI. Nothing
here formats prose for the generator.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from storybranch.engine.structure_state import get_current_act, get_current_beat
from storybranch.models.page import Page
from storybranch.models.state import ConstraintEntry, KeyedEntry, ThreadEntry, ThreatEntry, Urgency
from storybranch.models.story import Story, get_structure_version

OPEN_THREAD_PANEL_LIMIT = 6
KEYED_ENTRY_PANEL_LIMIT = 6

_URGENCY_PRIORITY = {Urgency.HIGH: 0, Urgency.MEDIUM: 1, Urgency.LOW: 2}


@dataclass(frozen=True)
class ActDisplayInfo:
    act_number: int
    act_name: str
    beat_id: str
    beat_name: str
    display_string: str


@dataclass(frozen=True)
class PanelRow:
    id: str
    text: str
    display_label: str


@dataclass(frozen=True)
class OpenThreadPanelRow(PanelRow):
    thread_type: str = ""
    urgency: str = ""


@dataclass(frozen=True)
class PanelData:
    rows: list[PanelRow] = field(default_factory=list)
    overflow_summary: str | None = None


def get_act_display_info(story: Story, page: Page) -> ActDisplayInfo | None:
    """Act/beat label ("Act N: name - Beat a.b: name") for the page's position.

    None when the page has no structure version or its position is out of range.
    """
    if page.structure_version_id is None or not story.structure_versions:
        return None
    version = get_structure_version(story, page.structure_version_id)
    if version is None:
        return None

    state = page.accumulated_structure_state
    act = get_current_act(version.structure, state)
    beat = get_current_beat(version.structure, state)
    if act is None or beat is None:
        return None

    act_number = int(act.id) if act.id.isdigit() else state.current_act_index + 1
    return ActDisplayInfo(
        act_number=act_number,
        act_name=act.name,
        beat_id=beat.id,
        beat_name=beat.name,
        display_string=f"Act {act_number}: {act.name} - Beat {beat.id}: {beat.name}",
    )


def _urgency_priority(urgency: str) -> int:
    try:
        return _URGENCY_PRIORITY[Urgency(urgency)]
    except ValueError:
        return len(_URGENCY_PRIORITY)


def get_open_thread_panel_rows(
    threads: Sequence[ThreadEntry], limit: int = OPEN_THREAD_PANEL_LIMIT
) -> list[OpenThreadPanelRow]:
    """Threads ordered HIGH, MEDIUM, LOW (stable within urgency), capped at *limit*."""
    ordered = sorted(threads, key=lambda t: _urgency_priority(t.urgency))
    return [
        OpenThreadPanelRow(
            id=thread.id,
            text=thread.text,
            display_label=f"({thread.thread_type}/{thread.urgency}) {thread.text}",
            thread_type=str(thread.thread_type),
            urgency=str(thread.urgency),
        )
        for thread in ordered[:limit]
    ]


def get_open_thread_panel_data(
    threads: Sequence[ThreadEntry], limit: int = OPEN_THREAD_PANEL_LIMIT
) -> PanelData:
    ordered = sorted(threads, key=lambda t: _urgency_priority(t.urgency))
    hidden = ordered[limit:]

    parts = []
    for urgency in (Urgency.HIGH, Urgency.MEDIUM, Urgency.LOW):
        count = sum(1 for t in hidden if t.urgency == urgency)
        if count:
            parts.append(f"{count} ({urgency.value.lower()})")

    return PanelData(
        rows=list(get_open_thread_panel_rows(threads, limit)),
        overflow_summary=f"Not shown: {', '.join(parts)}" if parts else None,
    )


def _overflow(total: int, limit: int) -> str | None:
    hidden = total - limit
    return f"+{hidden} more not shown" if hidden > 0 else None


def get_keyed_entry_panel_data(
    entries: Sequence[KeyedEntry], limit: int = KEYED_ENTRY_PANEL_LIMIT
) -> PanelData:
    return PanelData(
        rows=[PanelRow(id=e.id, text=e.text, display_label=e.text) for e in entries[:limit]],
        overflow_summary=_overflow(len(entries), limit),
    )


def get_threat_panel_data(
    entries: Sequence[ThreatEntry], limit: int = KEYED_ENTRY_PANEL_LIMIT
) -> PanelData:
    return PanelData(
        rows=[
            PanelRow(id=e.id, text=e.text, display_label=f"({e.threat_type}) {e.text}")
            for e in entries[:limit]
        ],
        overflow_summary=_overflow(len(entries), limit),
    )


def get_constraint_panel_data(
    entries: Sequence[ConstraintEntry], limit: int = KEYED_ENTRY_PANEL_LIMIT
) -> PanelData:
    return PanelData(
        rows=[
            PanelRow(id=e.id, text=e.text, display_label=f"({e.constraint_type}) {e.text}")
            for e in entries[:limit]
        ],
        overflow_summary=_overflow(len(entries), limit),
    )
