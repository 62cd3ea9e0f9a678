"""
Index-preserving parallel task group.

Runs one callable per input item on a thread pool and returns one
TaskOutcome per item, in input order, whether the call succeeded or
raised. Siblings are never cancelled when one fails.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence


@dataclass
class TaskOutcome:
    """Result of one task, tagged with the index of its input item."""
    index: int
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def run_indexed(
    func: Callable[[int, Any], Any],
    items: Sequence[Any],
    max_workers: int = 4,
) -> List[TaskOutcome]:
    """
    Call func(index, item) for every item concurrently.

    Returns outcomes ordered by input index. Exceptions are captured on
    the outcome, never raised.
    """
    outcomes: List[Optional[TaskOutcome]] = [None] * len(items)
    if not items:
        return []

    workers = max(1, min(max_workers, len(items)))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = {pool.submit(func, i, item): i for i, item in enumerate(items)}
        for future in as_completed(futures):
            index = futures[future]
            try:
                outcomes[index] = TaskOutcome(index=index, value=future.result())
            except Exception as e:
                outcomes[index] = TaskOutcome(index=index, error=e)

    return outcomes
