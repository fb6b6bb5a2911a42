from __future__ import annotations

import csv
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import numpy as np

from .geometry import Placement


class OutputSink(ABC):
    @abstractmethod
    def open(self, session_dir: Path) -> None: ...

    @abstractmethod
    def write_placement(self, label: str, placement: Placement) -> None: ...

    @abstractmethod
    def close(self) -> None: ...


class CsvOutput(OutputSink):
    HEADER = [
        "recorded_at",
        "label",
        "x", "y", "z",
        "hit", "distance",
        "origin_x", "origin_y", "origin_z",
    ]

    def __init__(self, filename: str = "anchors.csv"):
        self.filename = filename
        self.path: Optional[Path] = None
        self._fh = None
        self._w = None

    def open(self, session_dir: Path) -> None:
        self.path = Path(session_dir) / self.filename
        self._fh = open(self.path, "w", newline="")
        self._w = csv.writer(self._fh)
        self._w.writerow(self.HEADER)

    def write_placement(self, label: str, placement: Placement) -> None:
        if self._w is None:
            return
        p = np.asarray(placement.point, dtype=float).reshape(3).tolist()
        o = np.asarray(placement.ray.origin, dtype=float).reshape(3).tolist()
        self._w.writerow([
            f"{time.time():.6f}",
            label,
            *(f"{c:.6f}" for c in p),
            int(placement.hit),
            f"{placement.distance:.6f}",
            *(f"{c:.6f}" for c in o),
        ])
        self._fh.flush()

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None
            self._w = None

