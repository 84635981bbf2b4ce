"""
Typed Exception Hierarchy for the Approval Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers render different messages for "waiting on previous step" and
"not authorized", so the distinction must survive the trip from the
kernel to the UI without anyone parsing message strings.

Every error:
  1. Has a TYPED exception class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes (not just a message string)

Example:
    try:
        service.decide(enrollment_id, step_id, principal, StepDecision.APPROVED)
    except OutOfOrderError as e:
        api_response(code=e.code, blocking_order=e.blocking_order)
    except StepDecisionError as e:
        api_response(code=e.code)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ApprovalKernelError (base)
    |
    +-- ConfigurationError
    |
    +-- ChainDefinitionError
    |   +-- InvalidChainDefinitionError
    |   +-- StepDefinitionNotFoundError
    |
    +-- EnrollmentChainError
    |   +-- EnrollmentChainNotFoundError
    |   +-- EnrollmentChainExistsError
    |   +-- StepNotFoundError
    |
    +-- StepDecisionError
    |   +-- AlreadyDecidedError
    |   +-- OutOfOrderError
    |   +-- UnauthorizedApproverError
    |   +-- ChainTerminalError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Definition      | INVALID_CHAIN_DEFINITION    | Duplicate order, >1 final step, head+role
                | STEP_DEFINITION_NOT_FOUND   | Definition id doesn't exist (or deleted)
----------------|-----------------------------|-----------------------------------------
Enrollment      | ENROLLMENT_CHAIN_NOT_FOUND  | No chain instantiated for enrollment
                | ENROLLMENT_CHAIN_EXISTS     | Chain already instantiated
                | STEP_NOT_FOUND              | Step id not part of the enrollment
----------------|-----------------------------|-----------------------------------------
Decision        | ALREADY_DECIDED             | Step no longer pending (or lost a race)
                | OUT_OF_ORDER                | Upstream step not yet approved
                | UNAUTHORIZED_APPROVER       | Principal lacks role / head authority
                | CHAIN_TERMINAL              | Enrollment already Rejected/FinalApproved
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Mutating a step snapshot in place
----------------|-----------------------------|-----------------------------------------
Config          | CONFIGURATION_ERROR         | Missing / malformed configuration

===============================================================================
HANDLING PATTERNS
===============================================================================

1. Decision errors are recoverable and user-facing.  Refresh the chain
   and show the specific reason.

2. AlreadyDecidedError after a retry means the earlier attempt succeeded
   (or another approver won the race).  Do not retry again.

3. InvalidChainDefinitionError at instantiation is fatal to the
   enrollment's creation.  Fix the course tab's chain first.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from approval_kernel.domain.approval_chain import GateDenialReason


class ApprovalKernelError(Exception):
    """
    Base exception for all approval kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "APPROVAL_KERNEL_ERROR"


class ConfigurationError(ApprovalKernelError):
    """Configuration file is missing a required value or is malformed."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Invalid configuration in {source}: {reason}")


# Chain definition exceptions


class ChainDefinitionError(ApprovalKernelError):
    """Base exception for course-tab chain definition errors."""

    code: str = "CHAIN_DEFINITION_ERROR"


class InvalidChainDefinitionError(ChainDefinitionError):
    """
    The step definitions of a course tab do not form a valid chain.

    Raised when writing a definition and again at instantiation time.
    """

    code: str = "INVALID_CHAIN_DEFINITION"

    def __init__(self, course_tab_id: str, violations: list[str]):
        self.course_tab_id = course_tab_id
        self.violations = violations
        super().__init__(
            f"Invalid approval chain for course tab {course_tab_id}: "
            + "; ".join(violations)
        )


class StepDefinitionNotFoundError(ChainDefinitionError):
    """Step definition with given ID was not found."""

    code: str = "STEP_DEFINITION_NOT_FOUND"

    def __init__(self, definition_id: str):
        self.definition_id = definition_id
        super().__init__(f"Step definition not found: {definition_id}")


# Enrollment chain exceptions


class EnrollmentChainError(ApprovalKernelError):
    """Base exception for enrollment chain lookup errors."""

    code: str = "ENROLLMENT_CHAIN_ERROR"


class EnrollmentChainNotFoundError(EnrollmentChainError):
    """No approval chain has been instantiated for the enrollment."""

    code: str = "ENROLLMENT_CHAIN_NOT_FOUND"

    def __init__(self, enrollment_id: str):
        self.enrollment_id = enrollment_id
        super().__init__(f"No approval chain for enrollment {enrollment_id}")


class EnrollmentChainExistsError(EnrollmentChainError):
    """The enrollment already has an approval chain."""

    code: str = "ENROLLMENT_CHAIN_EXISTS"

    def __init__(self, enrollment_id: str):
        self.enrollment_id = enrollment_id
        super().__init__(
            f"Approval chain already instantiated for enrollment {enrollment_id}"
        )


class StepNotFoundError(EnrollmentChainError):
    """Step ID is not part of the enrollment's chain."""

    code: str = "STEP_NOT_FOUND"

    def __init__(self, enrollment_id: str, step_id: str):
        self.enrollment_id = enrollment_id
        self.step_id = step_id
        super().__init__(
            f"Step {step_id} is not part of enrollment {enrollment_id}"
        )


# Step decision exceptions


class StepDecisionError(ApprovalKernelError):
    """
    Base exception for denied step decisions.

    A denied decision never writes anything, so callers may safely retry
    after refreshing.
    """

    code: str = "STEP_DECISION_ERROR"

    def __init__(self, enrollment_id: str, step_id: str, message: str):
        self.enrollment_id = enrollment_id
        self.step_id = step_id
        super().__init__(message)

    @staticmethod
    def from_denial(
        reason: GateDenialReason,
        enrollment_id: str,
        step_id: str,
        *,
        principal_id: str = "",
        blocking_order: int | None = None,
        aggregate_status: str = "",
        current_decision: str = "",
    ) -> StepDecisionError:
        """Build the typed error for a gate denial reason."""
        from approval_kernel.domain.approval_chain import GateDenialReason

        if reason == GateDenialReason.ALREADY_DECIDED:
            return AlreadyDecidedError(enrollment_id, step_id, current_decision)
        if reason == GateDenialReason.OUT_OF_ORDER:
            return OutOfOrderError(enrollment_id, step_id, blocking_order)
        if reason == GateDenialReason.UNAUTHORIZED:
            return UnauthorizedApproverError(enrollment_id, step_id, principal_id)
        return ChainTerminalError(enrollment_id, step_id, aggregate_status)


class AlreadyDecidedError(StepDecisionError):
    """
    Step is no longer Pending.

    Also raised when a concurrent decision won the compare-and-set.
    """

    code: str = "ALREADY_DECIDED"

    def __init__(self, enrollment_id: str, step_id: str, current_decision: str = ""):
        self.current_decision = current_decision
        super().__init__(
            enrollment_id,
            step_id,
            f"Step {step_id} of enrollment {enrollment_id} has already been "
            f"decided{f' ({current_decision})' if current_decision else ''}",
        )


class OutOfOrderError(StepDecisionError):
    """An upstream step is not yet Approved."""

    code: str = "OUT_OF_ORDER"

    def __init__(self, enrollment_id: str, step_id: str, blocking_order: int | None = None):
        self.blocking_order = blocking_order
        super().__init__(
            enrollment_id,
            step_id,
            f"Step {step_id} of enrollment {enrollment_id} is waiting on "
            f"previous step (order {blocking_order})",
        )


class UnauthorizedApproverError(StepDecisionError):
    """Principal lacks the step's role or head-approval authority."""

    code: str = "UNAUTHORIZED_APPROVER"

    def __init__(self, enrollment_id: str, step_id: str, principal_id: str = ""):
        self.principal_id = principal_id
        super().__init__(
            enrollment_id,
            step_id,
            f"Principal {principal_id} is not authorized to decide step "
            f"{step_id} of enrollment {enrollment_id}",
        )


class ChainTerminalError(StepDecisionError):
    """The enrollment's chain is Rejected or FinalApproved and frozen."""

    code: str = "CHAIN_TERMINAL"

    def __init__(self, enrollment_id: str, step_id: str, aggregate_status: str = ""):
        self.aggregate_status = aggregate_status
        super().__init__(
            enrollment_id,
            step_id,
            f"Approval workflow for enrollment {enrollment_id} is closed "
            f"({aggregate_status})",
        )


# Immutability exceptions


class ImmutabilityError(ApprovalKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify an immutable record.

    Step states snapshot their definition at enrollment time; the
    snapshot columns never change afterwards.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
