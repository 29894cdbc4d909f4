# WorkerBridge - Supervised Worker Process Bridge
# Copyright (C) 2026 WorkerBridge Authors
# SPDX-License-Identifier: Apache-2.0

"""Exit-code categorisation and operator-facing diagnostics."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from workerbridge.exceptions import UnexpectedExitError


class ExitCategory(Enum):
    DEPENDENCY = "dependency"
    IMPORT = "import"
    PERMISSION = "permission"
    EXECUTABLE_MISSING = "executable_missing"
    GENERIC = "generic"


_CODE_CATEGORIES: dict[int, ExitCategory] = {
    1: ExitCategory.DEPENDENCY,
    2: ExitCategory.IMPORT,
    126: ExitCategory.PERMISSION,
    127: ExitCategory.EXECUTABLE_MISSING,
}


@dataclass(frozen=True)
class ExitDiagnosis:
    exit_code: int
    category: ExitCategory
    title: str
    details: str


def categorize_exit_code(exit_code: int) -> ExitCategory:
    return _CODE_CATEGORIES.get(exit_code, ExitCategory.GENERIC)


def classify_exit(exit_code: int, environment_id: str | None = None) -> ExitDiagnosis:
    """Build the operator-facing diagnosis for a positive exit code."""
    category = categorize_exit_code(exit_code)
    env = environment_id or "unknown"

    if category is ExitCategory.DEPENDENCY:
        title = "Worker Dependency Error"
        details = (
            f"The worker for environment '{env}' stopped because of a missing "
            "or broken dependency.\n\n"
            "Reinstall the environment's packages and check the worker output "
            "log for the failing module."
        )
    elif category is ExitCategory.IMPORT:
        title = "Worker Import Error"
        details = (
            f"The worker for environment '{env}' could not import a required "
            "module.\n\n"
            "Verify the environment matches the worker's requirements."
        )
    elif category is ExitCategory.PERMISSION:
        title = "Worker Permission Error"
        details = (
            "The worker interpreter could not be executed (permission denied).\n\n"
            "Check the file permissions of the interpreter and the entry script."
        )
    elif category is ExitCategory.EXECUTABLE_MISSING:
        title = "Worker Executable Not Found"
        details = (
            "The worker interpreter or one of its helpers was not found.\n\n"
            "The environment may be incomplete or moved after installation."
        )
    else:
        title = "Worker Exited Unexpectedly"
        details = (
            f"The worker for environment '{env}' exited with code {exit_code}.\n\n"
            "Check the worker output log for detailed error messages."
        )
    return ExitDiagnosis(exit_code=exit_code, category=category, title=title, details=details)


def unexpected_exit_error(exit_code: int, environment_id: str | None = None) -> UnexpectedExitError:
    diagnosis = classify_exit(exit_code, environment_id)
    return UnexpectedExitError(
        exit_code,
        diagnosis.category,
        title=diagnosis.title,
        details=diagnosis.details,
        environment_id=environment_id,
    )
