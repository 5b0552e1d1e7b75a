from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol


class FailureReporter(Protocol):
    def report(self, event: str, exc: BaseException, **context: object) -> None: ...


@dataclass
class LoggingFailureReporter:
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("control_panel.failures"))

    def report(self, event: str, exc: BaseException, **context: object) -> None:
        details = " ".join(f"{key}={value}" for key, value in sorted(context.items()))
        self.logger.error("%s failed: %s %s", event, exc, details, exc_info=exc)


default_failure_reporter = LoggingFailureReporter()
