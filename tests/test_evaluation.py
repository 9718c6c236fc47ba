import numpy as np
import pandas as pd
import pytest

from susceptibility.evaluation import (
    ROC_COLUMNS, evaluate, interpret_auc, optimal_threshold, roc_table, trapezoid_auc
)
from susceptibility.model import SusceptibilityModel


LABELS = [0, 0, 1, 1]
SEPARATED = [0.05, 0.15, 0.85, 0.95]


class TestRocTable:
    def test_one_row_per_threshold(self):
        roc = roc_table(LABELS, SEPARATED, n_thresholds=50)
        assert list(roc.columns) == ROC_COLUMNS
        assert len(roc) == 50
        assert roc['threshold'].iloc[0] == 0.0
        assert roc['threshold'].iloc[-1] == 1.0

    def test_counts_at_each_threshold(self):
        roc = roc_table(LABELS, SEPARATED, n_thresholds=11)
        first = roc.iloc[0]
        assert (first['TP'], first['FP'], first['TN'], first['FN']) == (2, 2, 0, 0)
        assert first['TPR'] == 1.0 and first['FPR'] == 1.0

        middle = roc[roc['threshold'].round(2) == 0.5].iloc[0]
        assert (middle['TP'], middle['FP'], middle['TN'], middle['FN']) == (2, 0, 2, 0)

        last = roc.iloc[-1]
        assert (last['TP'], last['FP']) == (0, 0)

    def test_counts_always_sum_to_sample_size(self):
        roc = roc_table([0, 1, 1, 0, 1], [0.3, 0.6, 0.2, 0.9, 0.7], n_thresholds=20)
        assert (roc[['TP', 'FP', 'TN', 'FN']].sum(axis=1) == 5).all()

    def test_absent_class_gives_zero_rate(self):
        roc = roc_table([0, 0, 0], [0.2, 0.5, 0.9], n_thresholds=5)
        assert (roc['TPR'] == 0.0).all()

    def test_requires_two_thresholds(self):
        with pytest.raises(ValueError):
            roc_table(LABELS, SEPARATED, n_thresholds=1)

    def test_length_mismatch(self):
        with pytest.raises(ValueError):
            roc_table([0, 1], [0.5])


class TestAuc:
    def test_perfect_separation(self):
        roc = roc_table(LABELS, SEPARATED, n_thresholds=50)
        assert trapezoid_auc(roc) == pytest.approx(1.0)

    def test_uninformative_scores(self):
        roc = roc_table([1, 0], [0.5, 0.5], n_thresholds=50)
        assert trapezoid_auc(roc) == pytest.approx(0.5)

    def test_inverted_scores(self):
        roc = roc_table(LABELS, SEPARATED[::-1], n_thresholds=50)
        assert trapezoid_auc(roc) == pytest.approx(0.0)

    def test_single_point_has_no_area(self):
        roc = pd.DataFrame([{'threshold': 0.5, 'FPR': 0.2, 'TPR': 0.8}])
        assert trapezoid_auc(roc) == 0.0


class TestOptimalThreshold:
    def test_ties_go_to_lowest_threshold(self):
        roc = roc_table(LABELS, SEPARATED, n_thresholds=11)
        best = optimal_threshold(roc)
        assert best['J'] == pytest.approx(1.0)
        assert best['threshold'] == pytest.approx(0.2)

    def test_empty_table(self):
        with pytest.raises(ValueError):
            optimal_threshold(pd.DataFrame(columns=ROC_COLUMNS))


@pytest.mark.parametrize("auc, expected", [
    (0.3, "No discrimination (random)"),
    (0.5, "No discrimination (random)"),
    (0.65, "Poor discrimination"),
    (0.7, "Acceptable discrimination"),
    (0.85, "Excellent discrimination"),
    (0.9, "Outstanding discrimination"),
    (1.0, "Outstanding discrimination"),
])
def test_interpret_auc(auc, expected):
    assert interpret_auc(auc) == expected


def test_evaluate_trained_model():
    rng = np.random.default_rng(0)
    n = 60
    classes = np.array([0, 1] * (n // 2))
    frame = pd.DataFrame({
        'signal': classes * 10 + rng.normal(0, 1, n),
        'noise': rng.normal(0, 1, n),
        'class': classes
    })
    model = SusceptibilityModel(n_estimators=20, n_jobs=1).train(frame[:40], ['signal', 'noise'])

    result = evaluate(model, frame[40:], n_thresholds=50)

    assert result.auc >= 0.9
    assert result.interpretation == interpret_auc(result.auc)
    assert result.error_matrix.accuracy >= 0.9
    assert 'probability' in result.test_samples.columns
    assert len(result.roc) == 50
    summary = result.to_dict()
    assert summary['auc'] == result.auc
    assert set(summary['optimal_threshold']) == {'threshold', 'TPR', 'FPR', 'J'}
