"""
Result Models

Dataclass models for operation results and command outputs.
"""

from dataclasses import dataclass, field
from typing import Optional
from enum import Enum


class Outcome(Enum):
    """Outcome of a single step or resource action."""

    DONE = "done"
    SKIPPED = "skipped"
    WARNING = "warning"
    FAILED = "failed"
    NOT_REACHED = "not reached"


@dataclass
class StepRecord:
    """One line of the end-of-run summary."""

    name: str
    outcome: Outcome
    detail: str = ""


@dataclass
class RunSummary:
    """Ordered record of what a run did, for the final report."""

    records: list[StepRecord] = field(default_factory=list)
    stopped_at: Optional[str] = None

    def add(self, name: str, outcome: Outcome, detail: str = "") -> StepRecord:
        """Append a record and return it."""
        record = StepRecord(name=name, outcome=outcome, detail=detail)
        self.records.append(record)
        return record

    def outcome_of(self, name: str) -> Optional[Outcome]:
        """Get the last outcome recorded under a name."""
        for record in reversed(self.records):
            if record.name == name:
                return record.outcome
        return None

    @property
    def has_failures(self) -> bool:
        return any(r.outcome == Outcome.FAILED for r in self.records)

    @property
    def needs_follow_up(self) -> bool:
        """True when anything ended in a warning, failure or was never reached."""
        return any(
            r.outcome in (Outcome.WARNING, Outcome.FAILED, Outcome.NOT_REACHED)
            for r in self.records
        )


@dataclass
class ValidationResult:
    """Result of a validation operation."""

    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        """Check if validation has errors."""
        return len(self.errors) > 0

    def add_error(self, error: str) -> None:
        """Add an error to the validation result."""
        self.errors.append(error)
        self.is_valid = False

    def add_warning(self, warning: str) -> None:
        """Add a warning to the validation result."""
        self.warnings.append(warning)

    def __repr__(self) -> str:
        return f"ValidationResult(valid={self.is_valid}, errors={len(self.errors)}, warnings={len(self.warnings)})"


@dataclass
class ExecutionResult:
    """Result of a command execution (subprocess)."""

    returncode: int
    stdout: str = ""
    stderr: str = ""
    command: str = ""

    @property
    def is_success(self) -> bool:
        """Check if execution succeeded."""
        return self.returncode == 0

    @property
    def is_failure(self) -> bool:
        """Check if execution failed."""
        return self.returncode != 0

    @property
    def output(self) -> str:
        """Get combined output (stdout + stderr)."""
        return f"{self.stdout}\n{self.stderr}".strip()

    def __repr__(self) -> str:
        return f"ExecutionResult(returncode={self.returncode}, command='{self.command[:50]}...')"
