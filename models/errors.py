"""
Exception hierarchy for the pricing decision core.
"""


class PricingCoreError(Exception):
    """Base class for all pricing core errors."""


class NotFoundError(PricingCoreError):
    """Requested record (product, elasticity result, rule) does not exist."""


class InsufficientDataError(PricingCoreError):
    """Not enough history to compute an estimate at the required confidence."""


class ConstraintViolationError(PricingCoreError):
    """A price fails one or more margin / discount / price-change limits."""

    def __init__(self, message: str, violations: list[str] | None = None):
        super().__init__(message)
        self.violations = violations or []


class RuleValidationError(PricingCoreError):
    """A rule definition is invalid and was not persisted."""


class ContradictoryConditionsError(RuleValidationError):
    """A rule's conditions can never be satisfied."""


class UnreachableConstraintError(RuleValidationError, ConstraintViolationError):
    """A rule's action can never satisfy its attached constraints."""

    def __init__(self, message: str, violations: list[str] | None = None):
        ConstraintViolationError.__init__(self, message, violations)


class UpstreamTimeoutError(PricingCoreError):
    """A blocking dependency did not answer within its timeout."""


class ConcurrencyConflictError(PricingCoreError):
    """Optimistic version check on a price record failed."""
