"""
Export Module for Susceptibility Mapping
========================================

Writes the run's products to ``<output>/exports``:
- Probability, class and favorability GeoTIFFs
- Area statistics, ROC table, sample points, optional train/test splits,
  test probabilities and variable importance as CSV
- Metrics summary as JSON
"""

import json
from pathlib import Path
from typing import Dict, List, Union

import numpy as np
import pandas as pd

from susceptibility.config import PROCESSING
from susceptibility.evaluation import ROC_COLUMNS
from susceptibility.utils import get_logger, ensure_dir, write_geotiff

logger = get_logger()


def _to_builtin(value):
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, np.floating):
        return float(value)
    if isinstance(value, np.ndarray):
        return value.tolist()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class Exporter:
    """
    Write rasters and tables under one directory with a common prefix.

    Attributes
    ----------
    output_dir : Path
        Export directory
    prefix : str
        File name prefix, e.g. "Landslide_Susceptibility"

    Example
    -------
    >>> exporter = Exporter("outputs/karnal", "GW_Potential")
    >>> exporter.export_area_statistics(stats)
    """

    def __init__(self, output_dir: Union[str, Path], prefix: str):
        self.output_dir = ensure_dir(Path(output_dir) / "exports")
        self.prefix = prefix
        self.written = {}

        logger.info(f"Exporter initialized: {self.output_dir}")

    def _path(self, suffix: str) -> Path:
        return self.output_dir / f"{self.prefix}_{suffix}"

    def _record(self, key: str, path: Path) -> Path:
        self.written[key] = path
        return path

    # =========================================================================
    # RASTERS
    # =========================================================================

    def export_probability(self, probability: np.ndarray, transform, crs, band_name: str) -> Path:
        """float32 probability raster, nodata -9999."""
        path = write_geotiff(
            probability, self._path("Probability.tif"), transform, crs,
            nodata=PROCESSING['nodata_value'], dtype='float32', description=band_name
        )
        return self._record('probability', path)

    def export_classes(self, classes: np.ndarray, transform, crs, band_name: str) -> Path:
        """uint8 class raster, nodata 0."""
        path = write_geotiff(
            classes, self._path("Classes.tif"), transform, crs,
            nodata=PROCESSING['class_nodata'], dtype='uint8', description=band_name
        )
        return self._record('classes', path)

    def export_favorability(self, score: np.ndarray, transform, crs) -> Path:
        path = write_geotiff(
            score, self._path("Favorability_Score.tif"), transform, crs,
            nodata=PROCESSING['nodata_value'], dtype='float32', description="Favorability_Score"
        )
        return self._record('favorability', path)

    # =========================================================================
    # TABLES
    # =========================================================================

    def _write_csv(self, key: str, frame: pd.DataFrame, suffix: str) -> Path:
        path = self._path(suffix)
        frame.to_csv(path, index=False)
        logger.info(f"  Saved: {path.name} ({len(frame)} rows)")
        return self._record(key, path)

    def export_area_statistics(self, stats: pd.DataFrame) -> Path:
        return self._write_csv(
            'area_statistics', stats[['ClassValue', 'ClassName', 'Area_sqkm', 'Percentage']],
            "Area_Statistics.csv"
        )

    def export_roc(self, roc: pd.DataFrame) -> Path:
        return self._write_csv('roc', roc[ROC_COLUMNS], "ROC_Data.csv")

    @staticmethod
    def _point_columns(frame, band_names, label_column, class_column) -> List[str]:
        columns = ['longitude', 'latitude'] + list(band_names) + [label_column, class_column]
        if 'rand' in frame.columns:
            columns.append('rand')
        return columns

    def export_samples(
        self,
        samples: pd.DataFrame,
        band_names: List[str],
        label_column: str,
        class_column: str = "class"
    ) -> Path:
        """All sampled points: longitude, latitude, bands, label, class and ``rand`` when split."""
        columns = self._point_columns(samples, band_names, label_column, class_column)
        return self._write_csv('samples', samples[columns], "Training_Points.csv")

    def export_splits(
        self,
        train: pd.DataFrame,
        test: pd.DataFrame,
        band_names: List[str],
        label_column: str,
        class_column: str = "class"
    ) -> Dict[str, Path]:
        """Training and test partitions as separate CSVs."""
        return {
            'train_split': self._write_csv(
                'train_split', train[self._point_columns(train, band_names, label_column, class_column)],
                "Train_Split.csv"
            ),
            'test_split': self._write_csv(
                'test_split', test[self._point_columns(test, band_names, label_column, class_column)],
                "Test_Split.csv"
            )
        }

    def export_test_points(
        self,
        test_samples: pd.DataFrame,
        band_names: List[str],
        label_column: str,
        class_column: str = "class"
    ) -> Path:
        """Test points with their predicted probability."""
        columns = ['longitude', 'latitude'] + list(band_names) + [label_column, class_column, 'probability']
        return self._write_csv('test_points', test_samples[columns], "Test_Points_Probability.csv")

    def export_importance(self, importance: pd.DataFrame) -> Path:
        return self._write_csv('importance', importance[['variable', 'importance']], "Variable_Importance.csv")

    def export_metrics(self, metrics: Dict) -> Path:
        path = self._path("Metrics.json")
        with open(path, 'w') as f:
            json.dump(metrics, f, indent=2, default=_to_builtin)
        logger.info(f"  Saved: {path.name}")
        return self._record('metrics', path)
