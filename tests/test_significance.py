import math

import pytest
from scipy import stats

from idea_recommender.utils.significance import (
    EXACT,
    LEGACY,
    binomial_variance,
    cohens_d,
    legacy_p_value,
    legacy_power,
    welch_t_test,
)


def _ctr_example(mode=LEGACY, swap=False):
    a, b = 0.10, 0.14
    if swap:
        a, b = b, a
    return welch_t_test(a, b, 1000, 1000, binomial_variance(a), binomial_variance(b), mode=mode)


def test_ctr_example_is_significant():
    outcome = _ctr_example()

    se = math.sqrt(0.09 / 1000 + 0.1204 / 1000)
    assert outcome.t_statistic == pytest.approx(0.04 / se)
    assert outcome.p_value == 0.01
    assert outcome.is_significant is True
    assert outcome.ci_lower == pytest.approx(0.04 - 1.96 * se)
    assert outcome.ci_upper == pytest.approx(0.04 + 1.96 * se)
    assert outcome.effect_size == pytest.approx(0.04 / math.sqrt(0.1052))
    assert outcome.power == 0.6


def test_swapping_arms_is_symmetric():
    forward, backward = _ctr_example(), _ctr_example(swap=True)

    assert backward.t_statistic == pytest.approx(-forward.t_statistic)
    assert backward.effect_size == pytest.approx(-forward.effect_size)
    assert backward.p_value == forward.p_value
    assert backward.is_significant == forward.is_significant
    assert backward.ci_lower == pytest.approx(-forward.ci_upper)


def test_legacy_p_value_bands():
    assert legacy_p_value(3.0) == 0.01
    assert legacy_p_value(-2.0) == 0.05
    assert legacy_p_value(2.58) == 0.05
    assert legacy_p_value(1.7) == 0.1
    assert legacy_p_value(1.0) == 0.2


def test_legacy_power_bands():
    assert legacy_power(0.2, 1000, 1000) == 0.8
    assert legacy_power(0.0, 1000, 1000) == 0.2
    assert legacy_power(0.5, 0, 10) == 0.2


def test_zero_variance_is_not_significant():
    outcome = welch_t_test(0.0, 0.0, 50, 50, 0.0, 0.0)

    assert outcome.t_statistic == 0.0
    assert outcome.p_value == 0.2
    assert outcome.is_significant is False
    assert outcome.effect_size == 0.0
    assert outcome.ci_lower == outcome.ci_upper == 0.0


def test_cohens_d_needs_degrees_of_freedom():
    assert cohens_d(0.1, 0.09, 1, 0.2, 0.16, 1) == 0.0


def test_exact_mode_matches_welch_t_test():
    outcome = _ctr_example(mode=EXACT)
    reference = stats.ttest_ind_from_stats(
        0.14, math.sqrt(binomial_variance(0.14)), 1000,
        0.10, math.sqrt(binomial_variance(0.10)), 1000,
        equal_var=False,
    )

    assert outcome.t_statistic == pytest.approx(reference.statistic)
    assert outcome.p_value == pytest.approx(reference.pvalue)
    assert outcome.is_significant is True
    assert 0.7 < outcome.power < 0.85


def test_unknown_mode():
    with pytest.raises(ValueError):
        _ctr_example(mode="bayesian")
