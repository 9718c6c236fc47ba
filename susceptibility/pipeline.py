"""
Susceptibility Mapping Pipeline
===============================

Runs one study end to end:
study area -> derived features -> predictor stack -> training points ->
sampling -> split -> random forest -> evaluation -> probability map ->
classes -> areas -> figures -> exports -> saved model
"""

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

import numpy as np
import pandas as pd
import geopandas as gpd

from susceptibility.config import PROCESSING
from susceptibility.evaluation import EvaluationResult, evaluate
from susceptibility.export import Exporter
from susceptibility.feature_engineering import FeatureEngineer
from susceptibility.model import SusceptibilityModel
from susceptibility.preprocessing import DataPreprocessor, PredictorStack, StudyArea
from susceptibility.sampling import (
    CLASS_COLUMN, TrainingSampler, add_random_column, class_balance, random_split, sample_stack
)
from susceptibility.utils import get_logger, ensure_dir, format_duration, get_timestamp
from susceptibility.visualization import Visualizer
from susceptibility.zonation import area_statistics, classify_probability, format_area_table

logger = get_logger()


@dataclass
class PipelineResult:
    """Everything a finished run produced."""
    name: str
    profile: Dict
    scheme: Dict
    study_area: StudyArea
    stack: PredictorStack
    points: gpd.GeoDataFrame
    samples: pd.DataFrame
    train: pd.DataFrame
    test: pd.DataFrame
    model: SusceptibilityModel
    evaluation: EvaluationResult
    importance: pd.DataFrame
    probability: np.ndarray
    classes: np.ndarray
    area_stats: pd.DataFrame
    area_table: str
    favorability_score: Optional[np.ndarray] = None
    figures: Dict[str, Path] = field(default_factory=dict)
    exports: Dict[str, Path] = field(default_factory=dict)
    model_files: Dict[str, Path] = field(default_factory=dict)

    def metrics(self) -> Dict:
        """Summary of accuracy measures and class areas."""
        return {
            'study': self.name,
            'generated': get_timestamp(),
            'samples': {
                'total': class_balance(self.samples),
                'train': class_balance(self.train),
                'test': class_balance(self.test)
            },
            **self.evaluation.to_dict(),
            'total_area_sqkm': self.area_stats.attrs.get('total_area_sqkm'),
            'class_areas': self.area_stats.to_dict(orient='records')
        }


class SusceptibilityPipeline:
    """
    End-to-end run of one study configuration.

    Attributes
    ----------
    config : dict
        Study configuration from :func:`susceptibility.config.load_study_config`
    output_dir : Path
        Root directory for features, exports, figures and the model

    Example
    -------
    >>> study = load_study_config("studies/landslide_example.json")
    >>> result = SusceptibilityPipeline(study).run()
    >>> result.evaluation.auc
    """

    def __init__(self, config: Dict):
        self.config = config
        self.profile = config['profile']
        self.scheme = config['scheme']
        self.output_dir = Path(config['output_dir'])

        logger.info(f"SusceptibilityPipeline initialized: {config['name']} ({config['profile_name']})")
        logger.info(f"  Output: {self.output_dir}")

    @staticmethod
    def _step(number: int, title: str):
        logger.info("")
        logger.info("=" * 60)
        logger.info(f"STEP {number}: {title}")
        logger.info("=" * 60)

    def run(self) -> PipelineResult:
        config = self.config
        start_time = time.time()
        ensure_dir(self.output_dir)

        logger.info("=" * 60)
        logger.info(f"{self.profile['title'].upper()} MAPPING - {config['name']}")
        logger.info("=" * 60)

        # Step 1
        self._step(1, "STUDY AREA")
        study_area = StudyArea.from_file(config['boundary'])

        # Step 2
        layers = dict(config['layers'])
        derived = config['derived']
        if derived['slope'] or derived['aspect'] or derived['distances']:
            self._step(2, "DERIVED FEATURES")
            if 'dem' not in layers:
                raise ValueError("Derived features need a 'dem' layer")
            engineer = FeatureEngineer(layers['dem'])
            features = engineer.compute_all_features(
                self.output_dir / "features", derived['distances'],
                slope=derived['slope'], aspect=derived['aspect']
            )
            for name, path in features.items():
                layers.setdefault(name, path)
        else:
            self._step(2, "DERIVED FEATURES (none configured)")

        # Step 3
        self._step(3, "PREDICTOR STACK")
        preprocessor = DataPreprocessor(study_area, resolution=config['resolution'], crs=config['crs'])
        stack = preprocessor.build_stack(layers, config['categorical_layers'], config['nearest_layers'])
        logger.info("Checking raster value ranges...")
        stack.describe()

        # Step 4
        self._step(4, f"TRAINING POINTS ({config['sampling']['strategy']})")
        sampler = TrainingSampler(study_area, self.profile, config['sampling'], config['favorability'])
        points = sampler.generate(stack)

        # Step 5
        self._step(5, "SAMPLING PREDICTOR VALUES")
        label_column = self.profile['label_column']
        samples = sample_stack(stack, points, [label_column, CLASS_COLUMN])
        if samples.empty:
            raise ValueError("No training point has valid predictor values")

        # Step 6
        self._step(6, "TRAIN/TEST SPLIT")
        samples = add_random_column(samples, config['sampling']['split_seed'])
        train, test = random_split(samples, config['sampling']['train_fraction'])
        logger.info(f"  Training samples: {len(train)} {class_balance(train)}")
        logger.info(f"  Test samples: {len(test)} {class_balance(test)}")
        if test.empty:
            raise ValueError("Test split is empty; add more training points")

        # Step 7
        self._step(7, "RANDOM FOREST TRAINING")
        model = SusceptibilityModel(**config['model'])
        model.train(train, stack.band_names, CLASS_COLUMN)

        # Step 8
        self._step(8, "ERROR MATRIX AND VARIABLE IMPORTANCE")
        matrix = model.error_matrix(test)
        importance = model.feature_importance()

        # Step 9
        self._step(9, "ROC / AUC")
        evaluation = evaluate(model, test, config['n_thresholds'], matrix)
        model.metrics = evaluation.to_dict()

        # Step 10
        self._step(10, "PROBABILITY MAP")
        probability = model.predict_map(stack, chunk_rows=PROCESSING['prediction_chunk_rows'])

        # Step 11
        self._step(11, f"CLASSIFICATION ({config['scheme_name']})")
        classes = classify_probability(probability, self.scheme['thresholds'])

        # Step 12
        self._step(12, "AREA STATISTICS")
        area_stats = area_statistics(
            classes, stack.study_mask, stack.transform, stack.crs, self.scheme['class_names']
        )
        area_table = format_area_table(area_stats)
        for line in area_table.splitlines():
            logger.info(line)

        result = PipelineResult(
            name=config['name'],
            profile=self.profile,
            scheme=self.scheme,
            study_area=study_area,
            stack=stack,
            points=points,
            samples=samples,
            train=train,
            test=test,
            model=model,
            evaluation=evaluation,
            importance=importance,
            probability=probability,
            classes=classes,
            area_stats=area_stats,
            area_table=area_table,
            favorability_score=sampler.score
        )

        # Step 13
        if config['figures']:
            self._step(13, "FIGURES")
            visualizer = Visualizer(self.output_dir / "figures", title=self.profile['title'])
            result.figures = visualizer.create_all_figures(result)
        else:
            self._step(13, "FIGURES (skipped)")

        # Step 14
        self._step(14, "EXPORTS")
        result.exports = self.export(result)

        # Step 15
        self._step(15, "SAVING MODEL")
        result.model_files = model.save_model(self.output_dir / "model")

        logger.info("")
        logger.info("=" * 60)
        logger.info(f"COMPLETE in {format_duration(time.time() - start_time)}")
        logger.info(f"  AUC: {evaluation.auc:.4f} ({evaluation.interpretation})")
        logger.info(f"  Outputs: {self.output_dir}")
        logger.info("=" * 60)
        return result

    def export(self, result: PipelineResult) -> Dict[str, Path]:
        profile = self.profile
        stack = result.stack
        exporter = Exporter(self.output_dir, profile['export_prefix'])

        exporter.export_probability(result.probability, stack.transform, stack.crs, profile['probability_band'])
        exporter.export_classes(result.classes, stack.transform, stack.crs, profile['class_band'])
        if result.favorability_score is not None:
            exporter.export_favorability(result.favorability_score, stack.transform, stack.crs)

        exporter.export_area_statistics(result.area_stats)
        exporter.export_roc(result.evaluation.roc)
        exporter.export_samples(result.samples, stack.band_names, profile['label_column'])
        exporter.export_test_points(result.evaluation.test_samples, stack.band_names, profile['label_column'])
        if self.config.get('export_splits'):
            exporter.export_splits(result.train, result.test, stack.band_names, profile['label_column'])
        exporter.export_importance(result.importance)
        exporter.export_metrics(result.metrics())
        return dict(exporter.written)
