"""Reversible file mutations for benchmark steps.

Each applied :class:`~buildbench.dsl.SimpleStep` leaves an
:class:`ApplicableChanges` record on a LIFO stack: the previous bytes of
every file it touched, or ``None`` when the file did not exist.  The stack
is the single source of truth for what still has to be undone, whether by a
``RevertLastStep``, by cleanup between scenarios, or by suite teardown.
"""

from __future__ import annotations

from pathlib import Path

from buildbench.dsl import FileChange, RevertLastStep, SimpleStep, Step, StopDaemon
from buildbench.logging import get_logger

log = get_logger("changes")


class NothingToRevertError(RuntimeError):
    """A revert step ran with no applied changes left to undo."""


class ApplicableChanges:
    """Rollback record for the file changes of one step."""

    def __init__(self, project_dir: Path, changes: tuple[FileChange, ...]) -> None:
        self.project_dir = project_dir
        self.changes = changes
        self.previous_versions: list[tuple[Path, bytes | None]] = []

    def apply(self) -> bool:
        """Write every change, remembering what was there before.

        Stops at the first failure; the caller is expected to :meth:`revert`
        whatever was already written.
        """
        for change in self.changes:
            path = self.project_dir / change.changeable_file.target_file
            try:
                previous = path.read_bytes() if path.exists() else None
                new_content = change.read_content()
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_bytes(new_content)
            except OSError:
                log.error("Could not apply change %s", change, exc_info=True)
                return False
            self.previous_versions.append((path, previous))
            log.debug("Applied change %s", change)
        return True

    def revert(self) -> bool:
        """Restore every recorded file.

        Files that could not be restored stay in the record, so a later
        call can retry them.  Returns True when nothing is left.
        """
        failed: list[tuple[Path, bytes | None]] = []
        for path, previous in reversed(self.previous_versions):
            try:
                if previous is None:
                    path.unlink(missing_ok=True)
                else:
                    path.write_bytes(previous)
            except OSError:
                log.error("Could not revert change to %s", path, exc_info=True)
                failed.append((path, previous))
        failed.reverse()
        self.previous_versions = failed
        return not failed

    @property
    def is_reverted(self) -> bool:
        return not self.previous_versions


class ChangesApplier:
    """Applies and reverts step changes inside one project directory."""

    def __init__(self, project_dir: Path) -> None:
        self.project_dir = project_dir
        self._applied: list[ApplicableChanges] = []

    @property
    def has_applied_changes(self) -> bool:
        return bool(self._applied)

    @property
    def pending_count(self) -> int:
        return len(self._applied)

    def apply_step_changes(self, step: Step) -> bool:
        """Apply (or, for a revert step, undo) the file changes of *step*.

        Returns:
            True on success.  On failure nothing from this step remains
            applied, as far as the file system allows.

        Raises:
            NothingToRevertError: For a ``RevertLastStep`` with an empty
                stack.  This means the scenario is malformed.
        """
        if isinstance(step, SimpleStep):
            applicable = ApplicableChanges(self.project_dir, step.file_changes)
            if applicable.apply():
                self._applied.append(applicable)
                return True
            if not applicable.revert():
                log.warning(
                    "Partially applied changes could not be fully reverted: %s",
                    ", ".join(str(path) for path, _ in applicable.previous_versions),
                )
            return False
        if isinstance(step, RevertLastStep):
            if not self._applied:
                raise NothingToRevertError("Cannot revert last step: no applied changes")
            last = self._applied.pop()
            if last.revert():
                return True
            # Keep what could not be restored for the teardown retry.
            self._applied.append(last)
            return False
        if isinstance(step, StopDaemon):
            return True
        raise TypeError(f"Unknown step type: {type(step).__name__}")

    def revert_applied_changes(self) -> None:
        """Revert everything still applied, most recent first.

        Best effort: a failure is logged and the remaining records are still
        reverted.  Records with files that could not be restored stay on
        the stack.
        """
        kept: list[ApplicableChanges] = []
        while self._applied:
            applicable = self._applied.pop()
            try:
                reverted = applicable.revert()
            except Exception:  # noqa: BLE001
                log.error("Failed to revert changes", exc_info=True)
                reverted = False
            if not reverted:
                kept.append(applicable)
        if kept:
            kept.reverse()
            self._applied = kept
            log.warning(
                "%d change set(s) could not be reverted; the project directory "
                "may not be in its original state",
                len(kept),
            )
