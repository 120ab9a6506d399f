"""Step-sequencer pattern grid."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class StepTrigger:
    """One row firing on a step."""
    row: int
    velocity: float = 1.0


class PatternGrid:
    """Rows x steps grid of velocities; 0 means the cell is off."""

    def __init__(self, rows: int = 4, steps: int = 16) -> None:
        if rows <= 0 or steps <= 0:
            raise ValueError(f"Pattern needs at least one row and step, got {rows}x{steps}")
        self._cells = [[0.0] * steps for _ in range(rows)]

    @classmethod
    def from_rows(cls, rows: list[list[float | bool | int]]) -> "PatternGrid":
        """Build from nested lists; booleans map to velocity 1 or 0."""
        if not rows or not rows[0]:
            raise ValueError("Pattern must have at least one row and step")
        steps = len(rows[0])
        grid = cls(len(rows), steps)
        for r, row in enumerate(rows):
            if len(row) != steps:
                raise ValueError(f"Row {r} has {len(row)} steps, expected {steps}")
            for s, value in enumerate(row):
                grid.set(r, s, float(value))
        return grid

    @property
    def num_rows(self) -> int:
        return len(self._cells)

    @property
    def num_steps(self) -> int:
        return len(self._cells[0])

    def set(self, row: int, step: int, velocity: float = 1.0) -> None:
        self._cells[row][step] = min(1.0, max(0.0, float(velocity)))

    def toggle(self, row: int, step: int) -> bool:
        """Flip a cell between off and full velocity. Returns the new state."""
        on = self._cells[row][step] == 0.0
        self._cells[row][step] = 1.0 if on else 0.0
        return on

    def clear(self) -> None:
        for row in self._cells:
            row[:] = [0.0] * len(row)

    def active_triggers(self, step_index: int) -> list[StepTrigger]:
        step = step_index % self.num_steps
        return [
            StepTrigger(row=r, velocity=cells[step])
            for r, cells in enumerate(self._cells)
            if cells[step] > 0.0
        ]

    def to_rows(self) -> list[list[float]]:
        return [list(row) for row in self._cells]
