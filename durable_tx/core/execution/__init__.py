"""
Submission of stored durable transactions and outcome classification.
"""

from .submitter import (
    SubmissionResult,
    SubmissionState,
    SubmitOptions,
    Submitter,
    instruction_error,
)

__all__ = [
    "SubmissionResult",
    "SubmissionState",
    "SubmitOptions",
    "Submitter",
    "instruction_error",
]
