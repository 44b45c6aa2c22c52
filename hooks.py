"""Best-effort side effects that run after an operation's writes succeed."""

import logging
from typing import Callable, List, Tuple

logger = logging.getLogger(__name__)


class PostCommit:
    """Ordered list of callables staged during an operation.

    Nothing runs until :meth:`run` is called, which the services do only
    once their primary writes have gone through. A failing hook is logged
    and skipped; it never stops the hooks after it and never reaches the
    caller.
    """

    def __init__(self):
        self._hooks: List[Tuple[str, Callable[[], None]]] = []

    def add(self, name: str, fn: Callable, *args, **kwargs) -> None:
        self._hooks.append((name, lambda: fn(*args, **kwargs)))

    def __len__(self):
        return len(self._hooks)

    def run(self) -> int:
        """Run every staged hook and return how many failed."""
        failed = 0
        hooks, self._hooks = self._hooks, []
        for name, hook in hooks:
            try:
                hook()
            except Exception:
                failed += 1
                logger.exception("post-commit hook %s failed", name)
        return failed
