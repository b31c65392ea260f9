"""Core utilities and shared components for promoctl."""

# Note: Import context lazily to avoid circular imports
# Use: from promoctl.core.context import PromoCtlContext, pass_context
from promoctl.core.exceptions import ConflictError, PromoCtlError, UnavailableError, ValidationError
from promoctl.core.output import OutputFormatter, console

__all__ = [
    "PromoCtlError",
    "ValidationError",
    "ConflictError",
    "UnavailableError",
    "OutputFormatter",
    "console",
]
