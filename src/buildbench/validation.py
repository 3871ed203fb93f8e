"""Suite validation.

The builders accept any step sequence; this module finds the suites that
cannot run meaningfully before any file in the project is touched.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from buildbench.dsl import RevertLastStep, SimpleStep, Suite


@dataclass
class ValidationError:
    """A single suite validation error."""

    field: str
    message: str
    severity: str = "error"  # "error" or "warning"


def validate_suite(suite: Suite, project_dir: Path) -> list[ValidationError]:
    """Validate a benchmark suite against a project directory.

    Returns a list of validation errors.  Empty list means valid.
    """
    errors: list[ValidationError] = []

    if not project_dir.is_dir():
        errors.append(
            ValidationError(
                field="project_dir",
                message=f"Project directory does not exist: {project_dir}",
            )
        )

    if not suite.scenarios:
        errors.append(
            ValidationError(
                field="scenarios",
                message="No scenarios defined. Declare at least one scenario.",
            )
        )

    seen: set[str] = set()
    for scenario in suite.scenarios:
        if scenario.name in seen:
            errors.append(
                ValidationError(
                    field="scenarios",
                    message=f"Duplicate scenario name: '{scenario.name}'.",
                )
            )
        seen.add(scenario.name)

    for scenario in suite.scenarios:
        prefix = f"scenarios.{scenario.name}"
        if not scenario.steps:
            errors.append(
                ValidationError(
                    field=f"{prefix}.steps",
                    message=f"Scenario '{scenario.name}' has no steps.",
                    severity="warning",
                )
            )
        if scenario.repeat < 1:
            errors.append(
                ValidationError(
                    field=f"{prefix}.repeat",
                    message=f"Repeat must be at least 1 (got {scenario.repeat}).",
                )
            )

        applied = 0
        for number, step in enumerate(scenario.steps, start=1):
            field = f"{prefix}.steps[{number}]"
            if isinstance(step, SimpleStep):
                applied += 1
                for change in step.file_changes:
                    errors.extend(_check_change(field, change.changeable_file.target_file))
                    if change.content is None and not change.content_source.is_file():
                        errors.append(
                            ValidationError(
                                field=field,
                                message=(
                                    f"Content for change {change} not found: "
                                    f"{change.content_source}"
                                ),
                            )
                        )
            elif isinstance(step, RevertLastStep):
                if applied == 0:
                    errors.append(
                        ValidationError(
                            field=field,
                            message=(
                                f"Step {number} of scenario '{scenario.name}' reverts, "
                                "but no earlier step is left to revert."
                            ),
                        )
                    )
                else:
                    applied -= 1
            else:
                continue

            if step.tasks is None and not suite.default_tasks:
                errors.append(
                    ValidationError(
                        field=field,
                        message=(
                            f"Step {number} of scenario '{scenario.name}' has no tasks "
                            "and the suite declares no default tasks."
                        ),
                    )
                )

    return errors


def _check_change(field: str, target_file: str) -> list[ValidationError]:
    target = PurePosixPath(target_file)
    if target.is_absolute() or ".." in target.parts:
        return [
            ValidationError(
                field=field,
                message=f"Changed file must stay inside the project: {target_file}",
            )
        ]
    return []
