"""ORM models for the approval kernel."""

from approval_kernel.models.chain import (
    EnrollmentChainModel,
    EnrollmentStepModel,
    StepDefinitionModel,
)

__all__ = [
    "EnrollmentChainModel",
    "EnrollmentStepModel",
    "StepDefinitionModel",
]
