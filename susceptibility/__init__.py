"""
Susceptibility Mapping Package
==============================

Random-forest landslide susceptibility and groundwater potential mapping.

This package contains modules for:
- Study area, clipping and predictor stack alignment
- Feature engineering (slope, aspect, distance rasters)
- Training point generation and raster sampling
- Random Forest training and evaluation (error matrix, ROC/AUC)
- Probability zonation and class area statistics
- Exports and visualization
"""

__version__ = "1.0.0"

from .utils import setup_logging, timer, validate_raster
from .config import load_study_config
from .preprocessing import DataPreprocessor, PredictorStack, StudyArea
from .feature_engineering import FeatureEngineer
from .sampling import TrainingSampler, random_split, sample_stack
from .model import SusceptibilityModel
from .evaluation import evaluate, optimal_threshold, roc_table, trapezoid_auc
from .zonation import area_statistics, classify_probability
from .export import Exporter
from .visualization import Visualizer
from .pipeline import PipelineResult, SusceptibilityPipeline

__all__ = [
    "DataPreprocessor",
    "PredictorStack",
    "StudyArea",
    "FeatureEngineer",
    "TrainingSampler",
    "random_split",
    "sample_stack",
    "SusceptibilityModel",
    "evaluate",
    "optimal_threshold",
    "roc_table",
    "trapezoid_auc",
    "area_statistics",
    "classify_probability",
    "Exporter",
    "Visualizer",
    "PipelineResult",
    "SusceptibilityPipeline",
    "load_study_config",
    "setup_logging",
    "timer",
    "validate_raster"
]
