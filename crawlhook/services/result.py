"""Per-task outcome objects.

A ``TaskResult`` is created when a task starts, written only by that
task's pipeline, and returned to its caller. It moves through three
states: open (artifacts accumulate), finalized (success/error fixed;
cleanup diagnostics may still be noted) and sealed (read-only, handed to
the caller).
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from crawlhook.core.exceptions import CrawlhookError, ErrorStage
from crawlhook.middleware.request_id import get_request_id


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class ErrorRecord:
    kind: str
    message: str
    stage: ErrorStage
    artifact: str | None = None

    @classmethod
    def from_exception(
        cls,
        exc: BaseException,
        stage: ErrorStage | None = None,
        artifact: str | None = None,
    ) -> "ErrorRecord":
        if isinstance(exc, CrawlhookError):
            return cls(
                kind=exc.kind,
                message=exc.message,
                stage=stage or exc.stage,
                artifact=artifact or getattr(exc, "artifact", None),
            )
        return cls(
            kind=type(exc).__name__,
            message=str(exc),
            stage=stage or ErrorStage.EXTRACTION,
            artifact=artifact,
        )

    def to_dict(self) -> dict:
        data = {"kind": self.kind, "message": self.message, "stage": self.stage.value}
        if self.artifact:
            data["artifact"] = self.artifact
        return data


@dataclass(frozen=True)
class ExtractionResult:
    """Outcome of one artifact's cascade.

    ``present`` is False when every strategy failed; ``value`` then holds
    the artifact's declared empty value, never a partial one.
    """

    artifact: str
    value: Any = None
    strategy: str | None = None
    present: bool = False
    failures: tuple[str, ...] = ()

    @classmethod
    def absent(cls, artifact: str, empty: Any = None, failures=()) -> "ExtractionResult":
        return cls(artifact=artifact, value=empty, failures=tuple(failures))


class ResultSealedError(RuntimeError):
    """Write attempted on a TaskResult that no longer accepts it."""


@dataclass
class TaskResult:
    url: str
    task_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    request_id: str = field(default_factory=get_request_id)
    started_at: str = field(default_factory=utcnow_iso)
    finished_at: str | None = None
    success: bool | None = None
    error: ErrorRecord | None = None
    artifacts: dict[str, ExtractionResult] = field(default_factory=dict)
    navigation: Any = None
    cleanup_errors: list[ErrorRecord] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    _finalized: bool = field(default=False, repr=False)
    _sealed: bool = field(default=False, repr=False)

    @property
    def finalized(self) -> bool:
        return self._finalized

    @property
    def sealed(self) -> bool:
        return self._sealed

    def _check_open(self) -> None:
        if self._finalized:
            raise ResultSealedError(f"TaskResult {self.task_id} is already finalized")

    def record(self, result: ExtractionResult) -> None:
        self._check_open()
        self.artifacts[result.artifact] = result

    def warn(self, message: str) -> None:
        """Record a non-fatal problem worth reporting to the caller."""
        self._check_open()
        self.warnings.append(message)

    def value(self, artifact: str, default: Any = None) -> Any:
        found = self.artifacts.get(artifact)
        if found is None:
            return default
        return found.value

    def fail(self, record: ErrorRecord) -> None:
        """Finalize as failed. Artifacts gathered so far are kept for diagnostics."""
        self._check_open()
        self.error = record
        self.success = False
        self._close()

    def finalize(self) -> None:
        """Finalize as succeeded, whatever artifacts ended up absent."""
        self._check_open()
        self.success = True
        self._close()

    def _close(self) -> None:
        self.finished_at = utcnow_iso()
        self._finalized = True

    def note_cleanup(self, record: ErrorRecord) -> None:
        """Record a teardown problem. Never alters success or error."""
        if self._sealed:
            raise ResultSealedError(f"TaskResult {self.task_id} is sealed")
        self.cleanup_errors.append(record)

    def seal(self) -> "TaskResult":
        if not self._finalized:
            self.finalize()
        self._sealed = True
        return self

    def diagnostics(self) -> dict:
        data: dict[str, Any] = {
            "taskId": self.task_id,
            "startedAt": self.started_at,
            "finishedAt": self.finished_at,
            "strategies": {
                name: r.strategy for name, r in self.artifacts.items() if r.present
            },
            "absent": sorted(name for name, r in self.artifacts.items() if not r.present),
        }
        if self.request_id:
            data["requestId"] = self.request_id
        if self.cleanup_errors:
            data["cleanup"] = [e.to_dict() for e in self.cleanup_errors]
        if self.warnings:
            data["warnings"] = list(self.warnings)
        return data
