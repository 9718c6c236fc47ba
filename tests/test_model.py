import json

import numpy as np
import pandas as pd
import pytest

from susceptibility.model import SusceptibilityModel, build_error_matrix
from susceptibility.preprocessing import PredictorStack

from conftest import CRS, grid_transform


def separable_samples(n=40, seed=1):
    rng = np.random.default_rng(seed)
    classes = np.array([0, 1] * (n // 2))
    return pd.DataFrame({
        'slope': classes * 20 + rng.normal(10, 2, n),
        'ndvi': rng.uniform(0, 1, n),
        'class': classes
    })


@pytest.fixture
def trained_model():
    return SusceptibilityModel(n_estimators=15, n_jobs=1).train(separable_samples(), ['slope', 'ndvi'])


class TestErrorMatrix:
    def test_metrics(self):
        # 3 TN, 1 FP, 1 FN, 5 TP
        y_true = [0, 0, 0, 0, 1, 1, 1, 1, 1, 1]
        y_pred = [0, 0, 0, 1, 0, 1, 1, 1, 1, 1]
        result = build_error_matrix(y_true, y_pred)

        assert result.matrix.tolist() == [[3, 1], [1, 5]]
        assert result.accuracy == pytest.approx(0.8)
        assert result.producers_accuracy == pytest.approx([0.75, 5 / 6])
        assert result.consumers_accuracy == pytest.approx([0.75, 5 / 6])
        # po = 0.8, pe = (4*4 + 6*6) / 100 = 0.52
        assert result.kappa == pytest.approx((0.8 - 0.52) / 0.48)

    def test_single_class_agreement(self):
        result = build_error_matrix([1, 1, 1], [1, 1, 1])
        assert result.accuracy == 1.0
        assert result.kappa == 1.0
        assert result.producers_accuracy == [0.0, 1.0]

    def test_empty_input(self):
        with pytest.raises(ValueError):
            build_error_matrix([], [])

    def test_to_dict_is_json_serializable(self):
        json.dumps(build_error_matrix([0, 1, 1], [0, 1, 0]).to_dict())


class TestTraining:
    def test_forest_parameters(self):
        model = SusceptibilityModel()
        params = model.model.get_params()
        assert params['n_estimators'] == 500
        assert params['max_samples'] == 0.7
        assert params['min_samples_leaf'] == 2
        assert params['bootstrap'] is True

    def test_single_class_raises(self):
        samples = separable_samples()
        samples['class'] = 1
        with pytest.raises(ValueError, match="single class"):
            SusceptibilityModel(n_estimators=5).train(samples, ['slope', 'ndvi'])

    def test_empty_training_data(self):
        with pytest.raises(ValueError):
            SusceptibilityModel(n_estimators=5).train(pd.DataFrame(), ['slope'])

    def test_untrained_model_cannot_predict(self):
        with pytest.raises(ValueError, match="not trained"):
            SusceptibilityModel(n_estimators=5).predict(separable_samples())

    def test_missing_predictor_column(self, trained_model):
        with pytest.raises(ValueError, match="missing predictor"):
            trained_model.predict(pd.DataFrame({'slope': [1.0]}))

    def test_probabilities_and_importance(self, trained_model):
        samples = separable_samples(seed=7)
        probability = trained_model.predict_proba(samples)
        assert probability.shape == (len(samples),)
        assert np.all((probability >= 0) & (probability <= 1))

        importance = trained_model.feature_importance()
        assert list(importance.columns) == ['variable', 'importance']
        assert importance['variable'].iloc[0] == 'slope'
        assert importance['importance'].sum() == pytest.approx(1.0)

    def test_error_matrix_on_test_split(self, trained_model):
        result = trained_model.error_matrix(separable_samples(seed=3))
        assert result.matrix.sum() == 40
        assert result.accuracy > 0.9


def test_predict_map_leaves_invalid_cells_nan(trained_model, small_stack):
    small_stack.data[1, 2, 2] = np.nan
    probability = trained_model.predict_map(small_stack, chunk_rows=2)

    assert probability.shape == small_stack.shape
    assert probability.dtype == np.float32
    assert np.isnan(probability[0]).all()
    assert np.isnan(probability[2, 2])

    valid = small_stack.valid_mask()
    assert valid.sum() == 15
    assert not np.isnan(probability[valid]).any()
    assert np.all((probability[valid] >= 0) & (probability[valid] <= 1))


def test_predict_map_needs_all_bands(trained_model, small_stack):
    stack = PredictorStack(["slope"], small_stack.data[:1], grid_transform(), CRS, small_stack.study_mask)
    with pytest.raises(ValueError, match="missing predictor bands"):
        trained_model.predict_map(stack)


def test_save_and_load(tmp_path, trained_model):
    trained_model.metrics = {'auc': 0.9}
    files = trained_model.save_model(tmp_path / "model")
    assert files['model'].exists()
    assert files['metadata'].exists()

    loaded = SusceptibilityModel.load_model(tmp_path / "model")
    samples = separable_samples(seed=5)
    assert loaded.feature_names == ['slope', 'ndvi']
    assert loaded.metrics == {'auc': 0.9}
    np.testing.assert_allclose(loaded.predict_proba(samples), trained_model.predict_proba(samples))


def test_load_missing_model(tmp_path):
    with pytest.raises(FileNotFoundError):
        SusceptibilityModel.load_model(tmp_path)
