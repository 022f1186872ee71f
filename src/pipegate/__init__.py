"""Pipegate — multi-gate validation for CI workflow definitions.

Stable public API (semver-protected):
    validate: Validate every workflow document under a root directory.
    SuiteResult: Dataclass returned by validate.
    Finding: Dataclass for individual findings.
    PipegateFatalError: Raised when no analysis is possible at all.
    ConventionsError: Raised for a missing or invalid conventions document.
"""

__version__ = "0.1.0"

from pipegate.engine import validate
from pipegate.exceptions import ConventionsError, PipegateFatalError
from pipegate.lib.models import Finding, SuiteResult

__all__ = [
    "__version__",
    "validate",
    "SuiteResult",
    "Finding",
    "PipegateFatalError",
    "ConventionsError",
]
