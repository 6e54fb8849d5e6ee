from __future__ import annotations
from dataclasses import dataclass, field, asdict
from typing import Optional, Tuple, List, Dict, Any
import logging
import threading
import warnings

import numpy as np
import pandas as pd
from scipy import stats
from lifelines import CoxPHFitter
from lifelines.exceptions import ConvergenceError, ConvergenceWarning

from batchcox.config import BatchOptions
from batchcox.data import (
    complete_cases,
    column_levels,
    is_categorical,
    is_continuous,
    zero_variance,
)
from batchcox.errors import FailureReason
from batchcox.specs import ModelSpec, to_formula

logger = logging.getLogger("batchcox.models")

# Solver messages that mean Newton-Raphson stopped without a usable optimum.
# lifelines also raises ConvergenceWarning for advisory pre-fit checks (large
# column means, low variance); those do not fail a fit.
NON_CONVERGENCE_MARKERS = ("newton-raphson", "the log-likelihood is getting suspiciously close to 0")

# warnings.catch_warnings swaps process-wide state, so concurrent fits on the
# threading backend take turns.
_FIT_LOCK = threading.Lock()


@dataclass(frozen=True)
class Term:
    """One column of the design matrix and the variable it encodes.

    Attributes:
        column: Design-matrix column name handed to the solver
        variable: Dataset variable the column was built from
        is_control: True for adjustment variables
        contrast_level: Level coded 1 (None for continuous variables)
        ref_level: Reference level (None for continuous variables)
        n_contrast: Rows at the contrast level
        n_ref: Rows at the reference level
    """
    column: str
    variable: str
    is_control: bool
    contrast_level: Optional[str] = None
    ref_level: Optional[str] = None
    n_contrast: Optional[int] = None
    n_ref: Optional[int] = None


@dataclass(frozen=True)
class CoefficientRecord:
    """Summary statistics for one coefficient of one fitted model.

    Hazard ratio and interval bounds are on the exponentiated scale.
    """
    candidate: str
    variable: str
    is_control: bool
    contrast_level: Optional[str]
    ref_level: Optional[str]
    n_contrast: Optional[int]
    n_ref: Optional[int]
    beta: float
    se: float
    hr: float
    ci_lower: float
    ci_upper: float
    p_value: float
    global_p_value: float
    n: int
    n_events: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SpecFailure:
    """A specification that could not be fitted."""
    candidate: str
    reason: FailureReason
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"candidate": self.candidate, "reason": self.reason.value, "message": self.message}


@dataclass
class FittedModel:
    """A fitted proportional-hazards model and the encoding used to fit it.

    Attributes:
        candidate: Variable under test
        spec: Specification the model was fitted from
        formula: Survival-formula rendering of spec
        terms: Design columns in solver order
        n: Complete rows used in the fit
        n_events: Events among those rows
        global_p_value: Model-level test p-value
        cph: Fitted lifelines CoxPHFitter

    Example:
        >>> model.coefficients["TP53"]
        0.4127
        >>> model.hazard_ratios["stage[III]"]
        2.31
    """
    candidate: str
    spec: ModelSpec
    formula: str
    terms: Tuple[Term, ...]
    n: int
    n_events: int
    global_p_value: float
    cph: CoxPHFitter = field(repr=False)

    @property
    def coefficients(self) -> pd.Series:
        """Log-hazard coefficients indexed by design column."""
        return self.cph.params_

    @property
    def standard_errors(self) -> pd.Series:
        return self.cph.standard_errors_

    @property
    def hazard_ratios(self) -> pd.Series:
        return np.exp(self.cph.params_)

    @property
    def summary(self) -> pd.DataFrame:
        """Solver summary table (coef, se, z, p, intervals)."""
        return self.cph.summary


@dataclass
class FitResult:
    """Outcome of fitting one specification: a model with records, or a failure."""
    candidate: str
    model: Optional[FittedModel] = None
    records: Tuple[CoefficientRecord, ...] = ()
    failure: Optional[SpecFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def failed(cls, candidate: str, reason: FailureReason, message: str) -> "FitResult":
        logger.debug(f"{candidate}: {reason.value} - {message}")
        return cls(candidate=candidate, failure=SpecFailure(candidate, reason, message))


def _level_label(level) -> str:
    return str(level)


def build_design(
    spec: ModelSpec,
    frame: pd.DataFrame
) -> Tuple[pd.DataFrame, Tuple[Term, ...], Optional[Tuple[str, str]]]:
    """Translate a specification into the solver's design frame.

    Continuous variables enter as one column. Categorical variables enter as
    one indicator per observed non-reference level; the first observed
    declared level is the reference and unobserved levels are dropped.

    Args:
        spec: Model specification
        frame: Complete rows for the referenced columns

    Returns:
        Tuple containing:
        - design: Term columns plus the time and status columns
        - terms: Term metadata in design order
        - degenerate: (variable, message) for the first constant variable, else None
    """
    columns: Dict[str, np.ndarray] = {}
    terms: List[Term] = []

    for var in spec.variables:
        is_control = var != spec.candidate
        values = frame[var]

        if is_categorical(values):
            observed = set(values.unique())
            levels = [l for l in column_levels(values) if l in observed]
            if len(levels) < 2:
                return None, (), (var, f"only level {levels} observed in {len(frame)} complete rows")
            ref = levels[0]
            n_ref = int((values == ref).sum())
            for level in levels[1:]:
                indicator = (values == level).to_numpy(dtype=float)
                col = f"{var}[{_level_label(level)}]"
                columns[col] = indicator
                terms.append(Term(
                    column=col,
                    variable=var,
                    is_control=is_control,
                    contrast_level=_level_label(level),
                    ref_level=_level_label(ref),
                    n_contrast=int(indicator.sum()),
                    n_ref=n_ref,
                ))
        else:
            numeric = values.to_numpy(dtype=float)
            if zero_variance(numeric):
                return None, (), (var, f"constant value {numeric[0] if numeric.size else 'n/a'} "
                                       f"in {len(frame)} complete rows")
            columns[var] = numeric
            terms.append(Term(column=var, variable=var, is_control=is_control))

    design = pd.DataFrame(columns, index=frame.index)
    design[spec.time] = frame[spec.time].to_numpy(dtype=float)
    design[spec.status] = frame[spec.status].to_numpy(dtype=int)
    return design, tuple(terms), None


def global_test(cph: CoxPHFitter, method: str) -> float:
    """Model-level p-value.

    Args:
        cph: Fitted solver
        method: 'likelihood' (likelihood-ratio test) or 'wald'

    Returns:
        p-value of the null hypothesis that all coefficients are zero
    """
    if method == "likelihood":
        return float(cph.log_likelihood_ratio_test().p_value)
    beta = cph.params_.to_numpy()
    cov = cph.variance_matrix_.to_numpy()
    stat = float(beta @ np.linalg.solve(cov, beta))
    return float(stats.chi2.sf(stat, df=len(beta)))


def extract_records(model: FittedModel, ci_level: float) -> Tuple[CoefficientRecord, ...]:
    """Normalize a fitted model into one record per coefficient.

    Hazard ratio is exp(beta) and interval bounds are exp(beta -/+ z * se),
    where z is the standard normal quantile for ``ci_level``.
    """
    z = stats.norm.ppf(1 - (1 - ci_level) / 2)
    params = model.coefficients
    se = model.standard_errors
    p = model.summary["p"]

    records = []
    for term in model.terms:
        beta = float(params[term.column])
        term_se = float(se[term.column])
        records.append(CoefficientRecord(
            candidate=model.candidate,
            variable=term.variable,
            is_control=term.is_control,
            contrast_level=term.contrast_level,
            ref_level=term.ref_level,
            n_contrast=term.n_contrast,
            n_ref=term.n_ref,
            beta=beta,
            se=term_se,
            hr=float(np.exp(beta)),
            ci_lower=float(np.exp(beta - z * term_se)),
            ci_upper=float(np.exp(beta + z * term_se)),
            p_value=float(p[term.column]),
            global_p_value=model.global_p_value,
            n=model.n,
            n_events=model.n_events,
        ))
    return tuple(records)


def _fit_solver(cph: CoxPHFitter, design: pd.DataFrame, spec: ModelSpec) -> Optional[str]:
    """Fit ``cph`` and return the solver's non-convergence message, if any.

    Other warnings raised during the fit are re-issued to the caller.
    """
    with _FIT_LOCK:
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            cph.fit(design, duration_col=spec.time, event_col=spec.status, show_progress=False)

    for w in caught:
        text = str(w.message).strip()
        if issubclass(w.category, ConvergenceWarning) and text.lower().startswith(NON_CONVERGENCE_MARKERS):
            return f"{w.category.__name__}: {text.splitlines()[0]}"

    for w in caught:
        warnings.warn_explicit(w.message, w.category, w.filename, w.lineno)
    return None


def fit_spec(spec: ModelSpec, data: pd.DataFrame, options: BatchOptions) -> FitResult:
    """Fit one specification with the proportional-hazards solver.

    Never raises for data problems: each is mapped to a FailureReason so the
    batch can continue.

    Args:
        spec: Model specification
        data: Full dataset (read-only)
        options: Batch options (completeness threshold, solver settings)

    Returns:
        FitResult holding the fitted model and its coefficient records, or a failure

    Example:
        >>> spec = build_specs(["TP53"], ["age"], "OS.time", "OS")[0]
        >>> result = fit_spec(spec, df, BatchOptions())
        >>> result.ok, len(result.records)
        (True, 2)
    """
    candidate = spec.candidate

    missing = [c for c in spec.columns if c not in data.columns]
    if missing:
        return FitResult.failed(candidate, FailureReason.MISSING_COLUMN,
                                f"columns {missing} not in dataset")

    untyped = [v for v in spec.variables
               if not (is_categorical(data[v]) or is_continuous(data[v]))]
    if untyped:
        return FitResult.failed(
            candidate, FailureReason.INVALID_TYPE,
            f"columns {untyped} are neither numeric nor declared categorical "
            f"(dtypes {[str(data[v].dtype) for v in untyped]})"
        )

    frame = complete_cases(data, spec.columns)
    if len(frame) < options.min_complete_rows:
        return FitResult.failed(
            candidate, FailureReason.INSUFFICIENT_ROWS,
            f"{len(frame)} complete rows, need at least {options.min_complete_rows}"
        )

    n_events = int(frame[spec.status].astype(int).sum())
    if n_events == 0:
        return FitResult.failed(candidate, FailureReason.NO_EVENTS,
                                f"no events among {len(frame)} complete rows")

    design, terms, degenerate = build_design(spec, frame)
    if degenerate is not None:
        var, message = degenerate
        return FitResult.failed(candidate, FailureReason.ZERO_VARIANCE, f"'{var}' has {message}")

    cph = CoxPHFitter(penalizer=options.penalizer, alpha=options.alpha)
    try:
        stalled = _fit_solver(cph, design, spec)
        global_p = None if stalled else global_test(cph, options.global_method)
    except (ConvergenceError, np.linalg.LinAlgError, ZeroDivisionError, ValueError) as e:
        return FitResult.failed(candidate, FailureReason.NON_CONVERGENCE,
                                f"{type(e).__name__}: {str(e).splitlines()[0] if str(e) else ''}")

    if stalled:
        return FitResult.failed(candidate, FailureReason.NON_CONVERGENCE, stalled)

    if not (np.isfinite(cph.params_).all() and np.isfinite(cph.standard_errors_).all()):
        return FitResult.failed(candidate, FailureReason.NON_CONVERGENCE,
                                "non-finite coefficient or standard error")

    model = FittedModel(
        candidate=candidate,
        spec=spec,
        formula=to_formula(spec),
        terms=terms,
        n=len(frame),
        n_events=n_events,
        global_p_value=global_p,
        cph=cph,
    )
    return FitResult(candidate=candidate, model=model,
                     records=extract_records(model, options.ci_level))
