"""
Empirical checks of the conformal coverage guarantee.

Under exchangeability each held-out score exceeds the calibration threshold
with probability at most alpha, so the violation count over m held-out
points is stochastically dominated by Binomial(m, alpha). A small one-sided
binomial p-value signals broken exchangeability (drift, leakage, a changed
encoder) rather than bad luck.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence

import numpy as np
from scipy import stats

from ..errors import ConfigurationError, require_open_unit
from .conformal import conformal_quantile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CoverageReport:
    """Violation statistics of held-out scores against one threshold."""

    threshold: float
    alpha: float
    n_test: int
    violations: int
    p_value: float

    @property
    def violation_rate(self) -> float:
        return self.violations / self.n_test if self.n_test else 0.0

    def consistent(self, significance: float = 0.01) -> bool:
        """True unless the violation count is significantly above alpha."""
        return self.p_value >= significance

    def to_dict(self) -> Dict[str, Any]:
        return {
            "threshold": self.threshold,
            "alpha": self.alpha,
            "n_test": self.n_test,
            "violations": self.violations,
            "violation_rate": self.violation_rate,
            "p_value": self.p_value,
        }


def coverage_report(threshold: float, test_scores: Sequence[float], alpha: float) -> CoverageReport:
    """
    Count held-out scores above ``threshold`` and test the count against alpha.

    Args:
        threshold: Conformal threshold from calibration
        test_scores: Nonconformity scores of held-out normal points
        alpha: Nominal error rate

    Returns:
        CoverageReport with a one-sided (greater) binomial test p-value
    """
    require_open_unit("alpha", alpha)
    scores = np.asarray(test_scores, dtype=np.float64)
    if scores.size == 0:
        raise ConfigurationError("need at least one test score", parameter="test_scores", value=[])

    violations = int(np.sum(scores > threshold))
    p_value = float(stats.binomtest(violations, scores.size, alpha, alternative="greater").pvalue)
    report = CoverageReport(threshold=float(threshold), alpha=alpha, n_test=int(scores.size),
                            violations=violations, p_value=p_value)
    if not report.consistent():
        logger.warning("Coverage violated: %d/%d above threshold (alpha=%.3f, p=%.2e)",
                       violations, scores.size, alpha, p_value)
    return report


def empirical_violation_rate(sampler: Callable[[np.random.Generator, int], np.ndarray],
                             n_calibration: int,
                             alpha: float,
                             trials: int = 1000,
                             seed: Optional[int] = 0) -> float:
    """
    Resampling estimate of ``P(s_{n+1} > conformal_quantile(s_1..s_n))``.

    Each trial draws ``n_calibration + 1`` exchangeable scores from
    ``sampler(rng, size)``, thresholds on the first n and checks the last.

    Returns:
        Fraction of trials in which the held-out score exceeded the threshold
    """
    require_open_unit("alpha", alpha)
    if n_calibration <= 0 or trials <= 0:
        raise ConfigurationError("n_calibration and trials must be positive",
                                 parameter="trials", value=trials)
    rng = np.random.default_rng(seed)
    violations = 0
    for _ in range(trials):
        draw = np.asarray(sampler(rng, n_calibration + 1), dtype=np.float64)
        threshold = conformal_quantile(draw[:-1].tolist(), alpha)
        violations += int(draw[-1] > threshold)
    return violations / trials
