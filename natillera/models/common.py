"""
Shared value types: member keys, money rounding and validation results.
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, RootModel, StringConstraints


CENT = Decimal("0.01")
ZERO = Decimal("0")


def as_decimal(value) -> Decimal:
    """Exact Decimal for user input (ints, strings, Decimals; floats via str)."""
    return value if isinstance(value, Decimal) else Decimal(str(value))


def to_money(value) -> Decimal:
    """Round a monetary value to cents (half up)."""
    return as_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


class MemberKey(RootModel[Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=50)]]):
    """
    External identifier of a member (national id number).

    Late-fee and due records relate to members through this key, never
    through an internal numeric id.

    Usage:
        key = MemberKey("1037654321")
    """
    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return self.root

    @classmethod
    def of(cls, value: "MemberKey | str") -> "MemberKey":
        return value if isinstance(value, cls) else cls(value)


class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'non_positive', 'exceeds_balance', 'future_date')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


class ValidationResult(BaseModel):
    """
    Result of the two-stage validation.

    Stage 1: Structural validation (amounts, required values)
    Stage 2: Semantic validation (balances, dates, state)
    """

    command: str = Field(
        ...,
        description="Name of the command being validated"
    )
    validated_at: datetime = Field(
        default_factory=datetime.utcnow
    )
    structural_valid: bool
    semantic_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.structural_valid and self.semantic_valid

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def warnings(self) -> list[str]:
        return [issue.message for issue in self.issues if issue.severity == "warning"]
