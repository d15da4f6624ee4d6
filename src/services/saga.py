"""Ordered action/compensation steps with automatic unwind on failure."""

import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)

Compensation = Callable[[], Union[Awaitable[Any], Any]]


class Saga:
    """
    Run a multi-step operation whose steps each have an undo.

    Usage::

        async with Saga("create_account") as saga:
            identity = await saga.step("identity", create(), lambda: delete(identity.id))
            ...

    If the block raises, compensations of the completed steps run in reverse
    order and the original exception propagates. A failing compensation is
    logged and the unwind continues.
    """

    def __init__(self, name: str):
        self.name = name
        self._completed: list[tuple[str, Optional[Callable[..., Any]]]] = []
        self.compensated: list[str] = []
        self.compensation_errors: list[str] = []

    async def __aenter__(self) -> "Saga":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            logger.warning(f"Saga {self.name} failed ({exc_type.__name__}: {exc}); compensating")
            await self.unwind()
        return False

    async def step(
        self,
        label: str,
        action: Union[Awaitable[Any], Callable[[], Any]],
        compensate: Optional[Callable[..., Any]] = None,
    ) -> Any:
        """
        Run ``action`` and register ``compensate`` for it.

        ``compensate`` is called with the action's result when it accepts one
        argument, otherwise with none.
        """
        if inspect.isawaitable(action):
            result = await action
        else:
            result = action()
            if inspect.isawaitable(result):
                result = await result

        if compensate is not None:
            self._completed.append((label, _bind(compensate, result)))
        else:
            self._completed.append((label, None))
        return result

    async def unwind(self):
        while self._completed:
            label, undo = self._completed.pop()
            if undo is None:
                continue
            try:
                outcome = undo()
                if inspect.isawaitable(outcome):
                    await outcome
                self.compensated.append(label)
            except Exception as e:
                logger.error(f"Saga {self.name}: compensation for '{label}' failed: {e}")
                self.compensation_errors.append(f"{label}: {e}")


def _bind(compensate: Callable[..., Any], result: Any) -> Callable[[], Any]:
    try:
        params = inspect.signature(compensate).parameters
    except (TypeError, ValueError):
        return compensate
    if len(params) >= 1:
        return lambda: compensate(result)
    return compensate
