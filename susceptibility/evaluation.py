"""
Model Evaluation: ROC Sweep and AUC
===================================

Threshold-sweep ROC table, trapezoidal AUC, Youden J optimum and the
verbal interpretation of the AUC value.
"""

from dataclasses import dataclass
from typing import Dict, Optional

import numpy as np
import pandas as pd

from susceptibility.config import AUC_INTERPRETATION, ROC
from susceptibility.model import ErrorMatrix, SusceptibilityModel
from susceptibility.utils import get_logger

logger = get_logger()

ROC_COLUMNS = ['threshold', 'FPR', 'TPR', 'TP', 'FP', 'TN', 'FN']


def roc_table(labels, probabilities, n_thresholds: int = ROC['n_thresholds']) -> pd.DataFrame:
    """
    Confusion counts and rates at evenly spaced thresholds in [0, 1].

    A sample is predicted positive when its probability is >= the
    threshold. Rates use max(denominator, 1) so an absent class gives 0.

    Parameters
    ----------
    labels : array-like
        Actual classes (0/1)
    probabilities : array-like
        Predicted probability of class 1
    n_thresholds : int
        Number of thresholds, including 0 and 1

    Returns
    -------
    pd.DataFrame
        Columns threshold, FPR, TPR, TP, FP, TN, FN, one row per threshold
    """
    if n_thresholds < 2:
        raise ValueError(f"At least 2 ROC thresholds are needed, got {n_thresholds}")

    labels = np.asarray(labels).astype(int)
    probabilities = np.asarray(probabilities, dtype=float)
    if labels.shape != probabilities.shape:
        raise ValueError("Labels and probabilities must have the same length")

    actual = labels == 1
    rows = []
    for threshold in np.linspace(0, 1, n_thresholds):
        predicted = probabilities >= threshold
        tp = int(np.sum(actual & predicted))
        fp = int(np.sum(~actual & predicted))
        tn = int(np.sum(~actual & ~predicted))
        fn = int(np.sum(actual & ~predicted))
        rows.append({
            'threshold': float(threshold),
            'FPR': fp / max(fp + tn, 1),
            'TPR': tp / max(tp + fn, 1),
            'TP': tp,
            'FP': fp,
            'TN': tn,
            'FN': fn
        })

    return pd.DataFrame(rows, columns=ROC_COLUMNS)


def trapezoid_auc(roc: pd.DataFrame) -> float:
    """
    Area under the ROC points by the trapezoid rule.

    Points are sorted by FPR (then TPR). No (0, 0) or (1, 1) anchor is
    added, so the area only spans the swept FPR range.
    """
    if len(roc) < 2:
        return 0.0

    points = roc.sort_values(['FPR', 'TPR'])
    x = points['FPR'].to_numpy(dtype=float)
    y = points['TPR'].to_numpy(dtype=float)
    return float(np.sum(np.abs(np.diff(x)) * (y[1:] + y[:-1]) / 2))


def optimal_threshold(roc: pd.DataFrame) -> pd.Series:
    """
    Row maximising Youden's J = TPR - FPR.

    Ties go to the lowest threshold. The returned row includes ``J``.
    """
    if roc.empty:
        raise ValueError("ROC table is empty")

    table = roc.sort_values('threshold').reset_index(drop=True)
    table['J'] = table['TPR'] - table['FPR']
    return table.loc[table['J'].idxmax()]


def interpret_auc(auc: float) -> str:
    """Verbal discrimination class of an AUC value."""
    if auc <= AUC_INTERPRETATION[0][0]:
        return AUC_INTERPRETATION[0][1]
    for upper, label in AUC_INTERPRETATION[1:-1]:
        if auc < upper:
            return label
    return AUC_INTERPRETATION[-1][1]


@dataclass
class EvaluationResult:
    """Test-set evaluation of a trained model."""
    error_matrix: ErrorMatrix
    roc: pd.DataFrame
    auc: float
    optimum: Dict
    interpretation: str
    test_samples: pd.DataFrame

    def to_dict(self) -> Dict:
        return {
            **self.error_matrix.to_dict(),
            'auc': self.auc,
            'optimal_threshold': self.optimum,
            'interpretation': self.interpretation
        }


def evaluate(
    model: SusceptibilityModel,
    test_df: pd.DataFrame,
    n_thresholds: int = ROC['n_thresholds'],
    matrix: Optional[ErrorMatrix] = None
) -> EvaluationResult:
    """
    Error matrix, ROC table, AUC and optimum threshold on the test split.

    An already computed ``matrix`` is reused. The returned
    ``test_samples`` carry a ``probability`` column.
    """
    logger.info("=" * 60)
    logger.info("MODEL EVALUATION")
    logger.info("=" * 60)

    if matrix is None:
        matrix = model.error_matrix(test_df)

    test_samples = test_df.copy()
    test_samples['probability'] = model.predict_proba(test_df)

    roc = roc_table(test_samples[model.class_property], test_samples['probability'], n_thresholds)
    auc = trapezoid_auc(roc)
    best = optimal_threshold(roc)
    optimum = {
        'threshold': float(best['threshold']),
        'TPR': float(best['TPR']),
        'FPR': float(best['FPR']),
        'J': float(best['J'])
    }
    interpretation = interpret_auc(auc)

    logger.info(f"  AUC: {auc:.4f} ({interpretation})")
    logger.info(
        f"  Optimal threshold: {optimum['threshold']:.3f} "
        f"(TPR={optimum['TPR']:.3f}, FPR={optimum['FPR']:.3f}, J={optimum['J']:.3f})"
    )

    return EvaluationResult(
        error_matrix=matrix,
        roc=roc,
        auc=auc,
        optimum=optimum,
        interpretation=interpretation,
        test_samples=test_samples
    )
