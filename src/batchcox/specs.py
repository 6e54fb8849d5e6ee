"""Model specifications: one per candidate variable, controls held fixed."""
from __future__ import annotations
from dataclasses import dataclass
from typing import List, Sequence, Tuple

from batchcox.errors import ConfigurationError


@dataclass(frozen=True)
class ModelSpec:
    """Structured description of one proportional-hazards model.

    Attributes:
        candidate: Variable under test
        controls: Ordered adjustment variables (never contains candidate)
        time: Survival time column
        status: Event status column
    """
    candidate: str
    controls: Tuple[str, ...]
    time: str
    status: str

    @property
    def variables(self) -> Tuple[str, ...]:
        """Model terms in order: candidate first, then controls."""
        return (self.candidate, *self.controls)

    @property
    def columns(self) -> Tuple[str, ...]:
        """Every dataset column the specification references."""
        return (self.time, self.status, *self.variables)


def _as_name_list(names, what: str) -> List[str]:
    if names is None:
        return []
    if isinstance(names, str):
        names = [names]
    names = list(names)
    bad = [n for n in names if not isinstance(n, str) or not n]
    if bad:
        raise ConfigurationError(f"{what} must be non-empty column names, got {bad}")
    return names


def build_specs(
    covariates: Sequence[str],
    controls: Sequence[str] | None,
    time: str,
    status: str
) -> List[ModelSpec]:
    """Build one ModelSpec per candidate covariate.

    The candidate is reassigned across the iteration while controls stay
    fixed. A control that is also the current candidate is dropped from that
    specification only. Duplicates are removed keeping first occurrence.

    Args:
        covariates: Candidate variables, at least one
        controls: Adjustment variables shared by every specification
        time: Survival time column
        status: Event status column

    Returns:
        Specifications in the order of ``covariates``

    Raises:
        ConfigurationError: If covariates is empty or names are malformed

    Example:
        >>> specs = build_specs(["TP53", "KRAS"], ["age", "sex"], "OS.time", "OS")
        >>> specs[1].variables
        ('KRAS', 'age', 'sex')
    """
    covariates = list(dict.fromkeys(_as_name_list(covariates, "covariates")))
    controls = list(dict.fromkeys(_as_name_list(controls, "controls")))
    if not covariates:
        raise ConfigurationError("At least one covariate is required")

    outcome = {time, status}
    clash = [c for c in covariates + controls if c in outcome]
    if clash:
        raise ConfigurationError(f"Time/status columns cannot be model terms: {clash}")

    return [
        ModelSpec(
            candidate=cov,
            controls=tuple(c for c in controls if c != cov),
            time=time,
            status=status,
        )
        for cov in covariates
    ]


def to_formula(spec: ModelSpec) -> str:
    """Render a specification in survival-formula notation for logs and metadata.

    Example:
        >>> to_formula(ModelSpec("TP53", ("age",), "OS.time", "OS"))
        'Surv(OS.time, OS) ~ TP53 + age'
    """
    return f"Surv({spec.time}, {spec.status}) ~ {' + '.join(spec.variables)}"
