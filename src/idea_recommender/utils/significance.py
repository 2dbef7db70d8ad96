"""Two-sample significance testing for experiment metrics.

``legacy`` mode reproduces the coarse band lookups the experiment dashboards were calibrated on:
p-values come from fixed |t| bands and power from noncentrality bands. ``exact`` mode uses Student's
t with Welch-Satterthwaite degrees of freedom and a normal approximation for power.
"""
from __future__ import annotations
from dataclasses import dataclass
from math import sqrt
from scipy import stats

LEGACY = "legacy"
EXACT = "exact"
SIGNIFICANCE_ALPHA = 0.05
LEGACY_CRITICAL_VALUE = 1.96

_P_BANDS = ((2.58, 0.01), (1.96, 0.05), (1.65, 0.1))
_P_FLOOR = 0.2
_POWER_BANDS = ((2.8, 0.8), (2.2, 0.6), (1.6, 0.4))
_POWER_FLOOR = 0.2


@dataclass
class TTestOutcome:
    t_statistic: float
    p_value: float
    is_significant: bool
    ci_lower: float
    ci_upper: float
    effect_size: float
    power: float


def binomial_variance(mean: float) -> float:
    return mean * (1 - mean)


def standard_error(var_a: float, n_a: int, var_b: float, n_b: int) -> float:
    if n_a <= 0 or n_b <= 0:
        return 0.0
    return sqrt(var_a / n_a + var_b / n_b)


def welch_t(mean_a: float, var_a: float, n_a: int, mean_b: float, var_b: float, n_b: int) -> float:
    se = standard_error(var_a, n_a, var_b, n_b)
    if se == 0:
        return 0.0
    return (mean_b - mean_a) / se


def legacy_p_value(t: float) -> float:
    for bound, p in _P_BANDS:
        if abs(t) > bound:
            return p
    return _P_FLOOR


def welch_df(var_a: float, n_a: int, var_b: float, n_b: int) -> float:
    a = var_a / n_a
    b = var_b / n_b
    denom = (a * a) / (n_a - 1) + (b * b) / (n_b - 1) if n_a > 1 and n_b > 1 else 0.0
    if denom == 0:
        return float(max(n_a + n_b - 2, 1))
    return (a + b) ** 2 / denom


def cohens_d(mean_a: float, var_a: float, n_a: int, mean_b: float, var_b: float, n_b: int) -> float:
    dof = n_a + n_b - 2
    if dof <= 0:
        return 0.0
    pooled_sd = sqrt(((n_a - 1) * var_a + (n_b - 1) * var_b) / dof)
    if pooled_sd == 0:
        return 0.0
    return (mean_b - mean_a) / pooled_sd


def noncentrality(effect_size: float, n_a: int, n_b: int) -> float:
    if n_a <= 0 or n_b <= 0:
        return 0.0
    harmonic = 2 / (1 / n_a + 1 / n_b)
    return abs(effect_size) * sqrt(harmonic / 2)


def legacy_power(effect_size: float, n_a: int, n_b: int) -> float:
    ncp = noncentrality(effect_size, n_a, n_b)
    for bound, power in _POWER_BANDS:
        if ncp > bound:
            return power
    return _POWER_FLOOR


def exact_power(effect_size: float, n_a: int, n_b: int, alpha: float = SIGNIFICANCE_ALPHA) -> float:
    ncp = noncentrality(effect_size, n_a, n_b)
    z = stats.norm.ppf(1 - alpha / 2)
    return float(stats.norm.cdf(ncp - z) + stats.norm.cdf(-ncp - z))


def welch_t_test(mean_a: float, mean_b: float, n_a: int, n_b: int, var_a: float, var_b: float,
                 mode: str = LEGACY, alpha: float = SIGNIFICANCE_ALPHA) -> TTestOutcome:
    """Compare control (a) against treatment (b).

    The confidence interval is around ``mean_b - mean_a``. In legacy mode it always uses 1.96.
    """
    if mode not in (LEGACY, EXACT):
        raise ValueError(f"Unknown significance mode {mode!r}")
    se = standard_error(var_a, n_a, var_b, n_b)
    t = welch_t(mean_a, var_a, n_a, mean_b, var_b, n_b)
    d = cohens_d(mean_a, var_a, n_a, mean_b, var_b, n_b)
    diff = mean_b - mean_a
    if mode == LEGACY:
        p = legacy_p_value(t)
        critical = LEGACY_CRITICAL_VALUE
        power = legacy_power(d, n_a, n_b)
    else:
        df = welch_df(var_a, n_a, var_b, n_b) if se else float(max(n_a + n_b - 2, 1))
        p = float(2 * stats.t.sf(abs(t), df)) if se else 1.0
        critical = float(stats.t.ppf(1 - alpha / 2, df))
        power = exact_power(d, n_a, n_b, alpha)
    margin = critical * se
    return TTestOutcome(
        t_statistic=t,
        p_value=p,
        is_significant=p < alpha,
        ci_lower=diff - margin,
        ci_upper=diff + margin,
        effect_size=d,
        power=power,
    )
