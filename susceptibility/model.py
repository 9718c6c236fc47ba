"""
Random Forest Model Module for Susceptibility Mapping
=====================================================

Wraps scikit-learn's Random Forest classifier:
- Training on sampled predictor values
- Error matrix with accuracy, kappa, producers' and consumers' accuracy
- Variable importance
- Chunked probability prediction over the predictor stack
- Model persistence (joblib + JSON metadata)
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

import numpy as np
import pandas as pd
import joblib
from sklearn.ensemble import RandomForestClassifier
from sklearn.metrics import cohen_kappa_score, confusion_matrix

from susceptibility.preprocessing import PredictorStack
from susceptibility.utils import get_logger, timer, ensure_dir

logger = get_logger()

CLASS_LABELS = [0, 1]
MODEL_FILE = "random_forest_model.joblib"
METADATA_FILE = "model_metadata.json"


@dataclass
class ErrorMatrix:
    """
    Confusion matrix of a binary classifier and the metrics derived from it.

    ``matrix[i][j]`` counts samples of actual class i predicted as class j.
    """
    matrix: np.ndarray
    accuracy: float
    kappa: float
    producers_accuracy: List[float]
    consumers_accuracy: List[float]
    labels: List[int] = field(default_factory=lambda: list(CLASS_LABELS))

    def to_dict(self) -> Dict:
        return {
            'labels': self.labels,
            'matrix': self.matrix.tolist(),
            'accuracy': self.accuracy,
            'kappa': self.kappa,
            'producers_accuracy': self.producers_accuracy,
            'consumers_accuracy': self.consumers_accuracy
        }


def _safe_ratio(numerator: np.ndarray, denominator: np.ndarray) -> List[float]:
    ratios = np.divide(
        numerator, denominator,
        out=np.zeros(len(numerator), dtype=float),
        where=denominator > 0
    )
    return [float(value) for value in ratios]


def build_error_matrix(y_true, y_pred, labels: List[int] = CLASS_LABELS) -> ErrorMatrix:
    """Error matrix and accuracy measures for actual vs predicted labels."""
    y_true = np.asarray(y_true).astype(int)
    y_pred = np.asarray(y_pred).astype(int)
    if y_true.size == 0:
        raise ValueError("No test samples to build an error matrix from")

    matrix = confusion_matrix(y_true, y_pred, labels=labels)
    diagonal = np.diag(matrix).astype(float)

    if len(np.union1d(y_true, y_pred)) < 2:
        # Perfect agreement on a single class
        kappa = 1.0 if np.array_equal(y_true, y_pred) else 0.0
    else:
        kappa = float(cohen_kappa_score(y_true, y_pred, labels=labels))

    return ErrorMatrix(
        matrix=matrix,
        accuracy=float(diagonal.sum() / matrix.sum()),
        kappa=kappa,
        producers_accuracy=_safe_ratio(diagonal, matrix.sum(axis=1)),
        consumers_accuracy=_safe_ratio(diagonal, matrix.sum(axis=0)),
        labels=list(labels)
    )


class SusceptibilityModel:
    """
    Random Forest model for susceptibility mapping.

    Attributes
    ----------
    model : RandomForestClassifier
        Underlying classifier
    feature_names : list
        Predictor bands, in training order
    metrics : dict
        Evaluation metrics stored with the model

    Example
    -------
    >>> model = SusceptibilityModel(n_estimators=500)
    >>> model.train(train_df, stack.band_names)
    >>> model.error_matrix(test_df).accuracy
    >>> probability = model.predict_map(stack)
    """

    def __init__(
        self,
        n_estimators: int = 500,
        max_samples: float = 0.7,
        min_samples_leaf: int = 2,
        random_state: int = 42,
        **kwargs
    ):
        """
        Parameters
        ----------
        n_estimators : int
            Number of trees in the forest
        max_samples : float
            Fraction of the training set drawn for each tree (bag fraction)
        min_samples_leaf : int
            Minimum samples in a leaf
        random_state : int
            Random seed for reproducibility
        **kwargs
            Additional parameters for RandomForestClassifier
        """
        self.model_params = {
            'n_estimators': n_estimators,
            'max_samples': max_samples,
            'min_samples_leaf': min_samples_leaf,
            'random_state': random_state,
            'bootstrap': True,
            'n_jobs': kwargs.pop('n_jobs', -1),
            **kwargs
        }
        self.model = RandomForestClassifier(**self.model_params)
        self.feature_names = []
        self.class_property = "class"
        self.metrics = {}
        self.is_trained = False

        logger.info("SusceptibilityModel initialized")
        logger.info(f"  Trees: {n_estimators}, Bag fraction: {max_samples}, Min leaf: {min_samples_leaf}")

    # =========================================================================
    # TRAINING
    # =========================================================================

    def _features(self, df: pd.DataFrame) -> np.ndarray:
        missing = [name for name in self.feature_names if name not in df.columns]
        if missing:
            raise ValueError(f"Samples are missing predictor columns: {missing}")
        return df[self.feature_names].to_numpy(dtype=float)

    @timer
    def train(
        self,
        train_df: pd.DataFrame,
        band_names: List[str],
        class_property: str = "class"
    ) -> "SusceptibilityModel":
        """
        Fit the forest on sampled predictor values.

        Raises
        ------
        ValueError
            If there are no samples or only one class is present
        """
        if train_df is None or train_df.empty:
            raise ValueError("No training data. Sample the predictor stack first.")
        if class_property not in train_df.columns:
            raise ValueError(f"Training data has no '{class_property}' column")

        self.feature_names = list(band_names)
        self.class_property = class_property
        X = self._features(train_df)
        y = train_df[class_property].astype(int).to_numpy()

        if len(np.unique(y)) < 2:
            raise ValueError(f"Training data has a single class ({np.unique(y).tolist()}); need both 0 and 1")

        logger.info("=" * 60)
        logger.info("TRAINING RANDOM FOREST MODEL")
        logger.info("=" * 60)
        logger.info(f"  Samples: {len(y)} (class 1: {int((y == 1).sum())}, class 0: {int((y == 0).sum())})")
        logger.info(f"  Predictors: {self.feature_names}")

        self.model.fit(X, y)
        self.is_trained = True
        return self

    def _check_trained(self):
        if not self.is_trained:
            raise ValueError("Model is not trained. Call train first.")

    # =========================================================================
    # PREDICTION
    # =========================================================================

    def predict(self, df: pd.DataFrame) -> np.ndarray:
        """Predicted class labels."""
        self._check_trained()
        return self.model.predict(self._features(df)).astype(int)

    def predict_proba(self, df: pd.DataFrame) -> np.ndarray:
        """Probability of class 1."""
        self._check_trained()
        return self._positive_probability(self._features(df))

    def _positive_probability(self, X: np.ndarray) -> np.ndarray:
        column = list(self.model.classes_).index(1)
        return self.model.predict_proba(X)[:, column]

    @timer
    def predict_map(self, stack: PredictorStack, chunk_rows: int = 256) -> np.ndarray:
        """
        Probability of class 1 for every valid cell of the stack.

        Returns
        -------
        np.ndarray
            float32 (rows, cols), NaN outside valid cells
        """
        self._check_trained()
        missing = [name for name in self.feature_names if name not in stack.band_names]
        if missing:
            raise ValueError(f"Stack is missing predictor bands: {missing}")

        logger.info("Generating probability map...")
        order = [stack.band_names.index(name) for name in self.feature_names]
        data = stack.data[order]
        valid = stack.valid_mask()
        n_rows, n_cols = stack.shape
        probability = np.full((n_rows, n_cols), np.nan, dtype=np.float32)

        for start in range(0, n_rows, chunk_rows):
            stop = min(start + chunk_rows, n_rows)
            chunk_valid = valid[start:stop]
            if not chunk_valid.any():
                continue
            X = data[:, start:stop][:, chunk_valid].T
            chunk = probability[start:stop]
            chunk[chunk_valid] = self._positive_probability(X)

        logger.info(f"  Valid pixels: {int(valid.sum()):,} / {n_rows * n_cols:,}")
        return probability

    # =========================================================================
    # EVALUATION
    # =========================================================================

    def error_matrix(self, test_df: pd.DataFrame) -> ErrorMatrix:
        """Error matrix of the test samples (rows actual, columns predicted)."""
        self._check_trained()
        if test_df is None or test_df.empty:
            raise ValueError("No test data available.")

        result = build_error_matrix(test_df[self.class_property], self.predict(test_df))

        logger.info("Confusion Matrix:")
        logger.info(f"  TN: {result.matrix[0, 0]}, FP: {result.matrix[0, 1]}")
        logger.info(f"  FN: {result.matrix[1, 0]}, TP: {result.matrix[1, 1]}")
        logger.info(f"  Overall accuracy: {result.accuracy:.3f}")
        logger.info(f"  Kappa: {result.kappa:.3f}")
        logger.info(f"  Producers accuracy: {[round(v, 3) for v in result.producers_accuracy]}")
        logger.info(f"  Consumers accuracy: {[round(v, 3) for v in result.consumers_accuracy]}")
        return result

    def feature_importance(self) -> pd.DataFrame:
        """Variable importance sorted from most to least important."""
        self._check_trained()
        importance = pd.DataFrame({
            'variable': self.feature_names,
            'importance': self.model.feature_importances_
        }).sort_values('importance', ascending=False).reset_index(drop=True)

        logger.info("Variable Importance:")
        for _, row in importance.iterrows():
            logger.info(f"  {row['variable']}: {row['importance'] * 100:.1f}%")
        return importance

    # =========================================================================
    # SAVE / LOAD MODEL
    # =========================================================================

    def save_model(self, output_dir: Union[str, Path]) -> Dict[str, Path]:
        """
        Save the trained forest and its metadata.

        Returns
        -------
        dict
            Paths to saved files
        """
        self._check_trained()
        output_dir = ensure_dir(output_dir)

        model_path = output_dir / MODEL_FILE
        joblib.dump(self.model, model_path)
        logger.info(f"  Model saved: {model_path}")

        metadata_path = output_dir / METADATA_FILE
        with open(metadata_path, 'w') as f:
            json.dump({
                'feature_names': self.feature_names,
                'class_property': self.class_property,
                'params': self.model_params,
                'metrics': self.metrics
            }, f, indent=2, default=float)

        return {'model': model_path, 'metadata': metadata_path}

    @classmethod
    def load_model(cls, model_dir: Union[str, Path]) -> "SusceptibilityModel":
        """Load a model written by :meth:`save_model`."""
        model_dir = Path(model_dir)
        model_path = model_dir / MODEL_FILE
        metadata_path = model_dir / METADATA_FILE
        if not model_path.exists() or not metadata_path.exists():
            raise FileNotFoundError(f"No saved model in {model_dir}")

        with open(metadata_path) as f:
            metadata = json.load(f)

        instance = cls(**metadata['params'])
        instance.model = joblib.load(model_path)
        instance.feature_names = metadata['feature_names']
        instance.class_property = metadata.get('class_property', "class")
        instance.metrics = metadata.get('metrics', {})
        instance.is_trained = True

        logger.info(f"Model loaded from: {model_dir}")
        return instance


# =============================================================================
# MAIN
# =============================================================================

if __name__ == "__main__":
    print("SusceptibilityModel module")
    print("\nUsage:")
    print("  model = SusceptibilityModel(n_estimators=500, max_samples=0.7)")
    print("  model.train(train_df, band_names)")
    print("  model.error_matrix(test_df)")
    print("  probability = model.predict_map(stack)")
