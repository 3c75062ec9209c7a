from __future__ import annotations

from enum import Enum


class CycleStage(str, Enum):
    """States of one synchronization cycle.

    IDLE -> DETECTING -> (FETCHING -> SCANNING -> MERGING)* -> FINALIZING -> IDLE
    """

    IDLE = "idle"
    DETECTING = "detecting"
    FETCHING = "fetching"
    SCANNING = "scanning"
    MERGING = "merging"
    FINALIZING = "finalizing"


# Legal transitions; FINALIZING is reachable straight from DETECTING on an empty index.
TRANSITIONS: dict[CycleStage, frozenset[CycleStage]] = {
    CycleStage.IDLE: frozenset({CycleStage.DETECTING}),
    CycleStage.DETECTING: frozenset(
        {CycleStage.FETCHING, CycleStage.FINALIZING, CycleStage.IDLE}
    ),
    CycleStage.FETCHING: frozenset(
        {CycleStage.SCANNING, CycleStage.FETCHING, CycleStage.FINALIZING, CycleStage.IDLE}
    ),
    CycleStage.SCANNING: frozenset(
        {CycleStage.MERGING, CycleStage.FETCHING, CycleStage.FINALIZING, CycleStage.IDLE}
    ),
    CycleStage.MERGING: frozenset(
        {CycleStage.FETCHING, CycleStage.FINALIZING, CycleStage.IDLE}
    ),
    CycleStage.FINALIZING: frozenset({CycleStage.IDLE}),
}


__all__ = ["CycleStage", "TRANSITIONS"]
