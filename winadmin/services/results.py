"""Step-by-step outcome records for multi-step operations."""

import logging
from dataclasses import dataclass, field
from typing import List

logger = logging.getLogger(__name__)


@dataclass
class Step:
    name: str
    ok: bool
    message: str = ""


@dataclass
class OperationResult:
    """Ordered record of what an operation did; a failed step never stops the next one."""
    steps: List[Step] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return bool(self.steps) and all(step.ok for step in self.steps)

    @property
    def failures(self) -> List[Step]:
        return [step for step in self.steps if not step.ok]

    def record(self, name: str, ok: bool, message: str = "") -> bool:
        self.steps.append(Step(name, ok, message))
        log = logger.info if ok else logger.warning
        log("%s: %s%s", name, "OK" if ok else "FAILED", f" ({message})" if message else "")
        return ok
