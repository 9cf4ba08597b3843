"""Background tasks for the squares engine."""

from squares.tasks.number_assignment import (
    run_assignment_sweep,
    start_assignment_scheduler,
    stop_assignment_scheduler,
)

__all__ = [
    "start_assignment_scheduler",
    "stop_assignment_scheduler",
    "run_assignment_sweep",
]
