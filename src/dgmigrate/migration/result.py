"""Mode selection and run results."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

logger = logging.getLogger(__name__)


class Mode(Enum):
    """The four mutually exclusive migration modes."""

    CLONE = "clone"
    CONVERT = "convert"
    CONTACT = "contact"
    RESTORE = "restore"


@dataclass
class ModeResult:
    """Outcome of one migration run."""

    mode: Mode
    group: str
    target: str | None = None
    backup_path: Path | None = None
    steps: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def record(self, step: str) -> None:
        """Log and remember a completed step."""
        logger.info(step)
        self.steps.append(step)

    def warn(self, message: str) -> None:
        """Log and remember a non-fatal problem."""
        logger.warning(message)
        self.warnings.append(message)
