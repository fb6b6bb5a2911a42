"""Diff a fresh instruction against the markers currently on display.

Markers are keyed by label. A detection with coordinates replaces any marker
of the same label (remove + create, no interpolation). A detection without
coordinates keeps the existing marker where it is. Labels missing from a
non-empty instruction are stale and removed. An empty or absent detection
list leaves every marker untouched.

Duplicate labels within one instruction resolve last-write-wins.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Mapping

from .anchor_types import Instruction, Marker
from .display import MarkerDisplay
from .geometry import Placement


PlaceFn = Callable[[float, float], Placement]


@dataclass
class ReconcileResult:
    to_create_or_update: list[tuple[str, Placement]] = field(default_factory=list)
    to_remove: list[Marker] = field(default_factory=list)
    unchanged: list[Marker] = field(default_factory=list)


def reconcile(previous: Mapping[str, Marker], instruction: Instruction, place: PlaceFn) -> ReconcileResult:
    working = dict(previous)

    if not instruction.detections:
        return ReconcileResult(unchanged=list(working.values()))

    kept: dict[str, Marker] = {}
    updates: dict[str, Placement] = {}
    to_remove: list[Marker] = []

    for det in instruction.detections:
        if not det.has_coordinates:
            marker = working.pop(det.label, None)
            if marker is not None:
                kept[det.label] = marker
            continue

        # a kept marker superseded by a later duplicate must go too
        old = working.pop(det.label, None) or kept.pop(det.label, None)
        if old is not None:
            to_remove.append(old)

        updates.pop(det.label, None)
        updates[det.label] = place(det.u, det.v)

    to_remove.extend(working.values())

    return ReconcileResult(
        to_create_or_update=list(updates.items()),
        to_remove=to_remove,
        unchanged=list(kept.values()),
    )


def apply_result(
    markers: Mapping[str, Marker], result: ReconcileResult, display: MarkerDisplay
) -> dict[str, Marker]:
    """Push a reconcile result to the display and return the new marker map."""
    current = dict(markers)

    for marker in result.to_remove:
        display.remove_marker(marker.handle)
        if current.get(marker.label) is marker:
            del current[marker.label]

    for label, placement in result.to_create_or_update:
        handle = display.show_marker(label, placement.point)
        current[label] = Marker(label, placement.point, handle)

    return current
