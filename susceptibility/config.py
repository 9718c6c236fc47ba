"""
Configuration Parameters for Susceptibility Mapping
===================================================

Default settings shared by the landslide-susceptibility and
groundwater-potential workflows, plus the loader for per-study JSON files.
"""

import json
import copy
from pathlib import Path
from typing import Dict, Union

# =============================================================================
# PROJECT PATHS
# =============================================================================

# Base directory (repository root)
BASE_DIR = Path(__file__).parent.parent.absolute()

# Data directories
DATA_DIR = BASE_DIR / "data"

# Output directories (created by the pipeline, not at import time)
OUTPUT_DIR = BASE_DIR / "outputs"

# =============================================================================
# PROCESSING PARAMETERS
# =============================================================================

PROCESSING = {
    "nodata_value": -9999,
    "class_nodata": 0,
    "resampling_method": "bilinear",  # For continuous data
    "resampling_categorical": "nearest",  # For categorical data
    "prediction_chunk_rows": 256
}

# =============================================================================
# RANDOM FOREST MODEL CONFIGURATION
# =============================================================================

MODEL_CONFIG = {
    "algorithm": "RandomForest",
    "params": {
        "n_estimators": 500,
        "max_samples": 0.7,  # bag fraction
        "min_samples_leaf": 2,
        "random_state": 42,
        "n_jobs": -1
    }
}

# =============================================================================
# SAMPLING CONFIGURATION
# =============================================================================

SAMPLING = {
    "strategy": "buffered_random",
    "seed": 42,
    "train_fraction": 0.7,
    "split_seed": 42,
    "scale": None  # meters; fallback stack resolution, None keeps the first layer's grid
}

SAMPLING_STRATEGIES = ("buffered_random", "favorability", "labelled")

# Synthetic training points from a weighted favorability score
FAVORABILITY = {
    "weights": {
        "slope": 0.15,
        "drainage": 0.12,
        "lineament": 0.15,
        "soil": 0.12,
        "geomorphology": 0.15,
        "rainfall": 0.08,
        "ndvi": 0.05,
        "lulc": 0.08,
        "lithology": 0.10
    },
    # Higher value = LESS favorable, scored as 1 - normalized
    "invert": ["slope"],
    "low_percentile": 20,
    "high_percentile": 80,
    "points_per_class": 300,
    "high_seed": 42,
    "low_seed": 123
}

# =============================================================================
# ROC CONFIGURATION
# =============================================================================

ROC = {
    "n_thresholds": 50
}

AUC_INTERPRETATION = [
    (0.5, "No discrimination (random)"),
    (0.7, "Poor discrimination"),
    (0.8, "Acceptable discrimination"),
    (0.9, "Excellent discrimination"),
    (1.0, "Outstanding discrimination")
]

# =============================================================================
# SUSCEPTIBILITY CLASSIFICATION
# =============================================================================

CLASSIFICATION_SCHEMES = {
    "three_class": {
        "thresholds": [0.33, 0.66],
        "class_names": ["Low", "Medium", "High"],
        "colors": ["#2ca25f", "#ffeb3b", "#de2d26"]
    },
    "five_class": {
        "thresholds": [0.2, 0.4, 0.6, 0.8],
        "class_names": ["Very Low", "Low", "Moderate", "High", "Very High"],
        "colors": ["#d73027", "#fc8d59", "#fee08b", "#91cf60", "#1a9850"]
    }
}

# =============================================================================
# STUDY PROFILES
# =============================================================================

PROFILES = {
    "landslide": {
        "title": "Landslide Susceptibility",
        "label_column": "point_type",
        "positive_label": "landslide",
        "negative_label": "non_landslide",
        "class_labels": ["Non-Landslide", "Landslide"],
        "buffer_m": 100,
        "scheme": "three_class",
        "probability_band": "LSM_Probability",
        "class_band": "LSM_Class",
        "export_prefix": "Landslide_Susceptibility",
        "probability_palette": ["green", "yellow", "red"]
    },
    "groundwater": {
        "title": "Groundwater Potential",
        "label_column": "potential",
        "positive_label": "High",
        "negative_label": "Low",
        "class_labels": ["Low", "High"],
        "buffer_m": 500,
        "scheme": "five_class",
        "probability_band": "GW_Probability",
        "class_band": "GW_Class",
        "export_prefix": "GW_Potential",
        "probability_palette": ["#d73027", "#fc8d59", "#fee08b", "#91cf60", "#1a9850"]
    }
}

# =============================================================================
# LAYER DISPLAY STYLES
# =============================================================================

LAYER_STYLES = {
    "dem": {"min": 500, "max": 6000, "palette": ["blue", "green", "yellow", "brown", "white"]},
    "slope": {"min": 0, "max": 60, "palette": ["white", "yellow", "orange", "red"]},
    "aspect": {"min": 0, "max": 360, "palette": ["blue", "cyan", "green", "yellow", "orange", "red"]},
    "ndvi": {"min": 0, "max": 255, "palette": ["brown", "yellow", "green"]},
    "lulc": {"min": 1, "max": 10,
             "palette": ["red", "green", "blue", "yellow", "cyan", "magenta", "brown", "orange"]},
    "rainfall": {"min": 0, "max": 3000, "palette": ["white", "blue", "purple"]},
    "dfriver": {"min": 0, "max": 2000, "palette": ["red", "yellow", "green"]},
    "dfroad": {"min": 0, "max": 2000, "palette": ["red", "yellow", "green"]},
    "dflineament": {"min": 0, "max": 2000, "palette": ["red", "yellow", "green"]},
    "favorability": {"min": 0, "max": 1,
                     "palette": ["red", "orange", "yellow", "lightgreen", "darkgreen"]}
}

DEFAULT_LAYER_STYLE = {"min": None, "max": None, "palette": ["#440154", "#21918c", "#fde725"]}

# =============================================================================
# VISUALIZATION SETTINGS
# =============================================================================

VISUALIZATION = {
    "figure_dpi": 200,
    "figure_format": "png",
    "title_fontsize": 14,
    "label_fontsize": 12,
    "tick_fontsize": 10
}

# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================

LOGGING = {
    "level": "INFO",
    "format": "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    "file_name": "susceptibility.log"
}


# =============================================================================
# STUDY CONFIGURATION FILES
# =============================================================================

def _resolve(base: Path, value: Union[str, None]) -> Union[Path, None]:
    if value is None:
        return None
    path = Path(value)
    return path if path.is_absolute() else (base / path).resolve()


def load_study_config(path: Union[str, Path]) -> Dict:
    """
    Load a JSON study description and merge it with the defaults.

    Parameters
    ----------
    path : str or Path
        JSON file naming the profile, boundary, layers and sampling strategy.
        Relative paths are resolved against the file's directory.

    Returns
    -------
    dict
        Normalized study configuration

    Raises
    ------
    FileNotFoundError
        If the JSON file does not exist
    ValueError
        If the profile, scheme or sampling strategy is unknown, or a
        required key is missing
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Study configuration not found: {path}")

    with open(path) as f:
        raw = json.load(f)

    return build_study_config(raw, base_dir=path.parent)


def build_study_config(raw: Dict, base_dir: Union[str, Path] = ".") -> Dict:
    """Validate a study dict and fill in profile and module defaults."""
    base_dir = Path(base_dir).absolute()

    for key in ("name", "profile", "boundary", "layers"):
        if key not in raw:
            raise ValueError(f"Study configuration is missing '{key}'")

    profile_name = raw["profile"]
    if profile_name not in PROFILES:
        raise ValueError(f"Unknown profile '{profile_name}'. Choose from {sorted(PROFILES)}")
    profile = copy.deepcopy(PROFILES[profile_name])

    scheme_name = raw.get("scheme", profile["scheme"])
    if scheme_name not in CLASSIFICATION_SCHEMES:
        raise ValueError(f"Unknown classification scheme '{scheme_name}'")

    sampling = dict(SAMPLING)
    sampling["buffer_m"] = profile["buffer_m"]
    sampling.update(raw.get("sampling", {}))
    if sampling["strategy"] not in SAMPLING_STRATEGIES:
        raise ValueError(
            f"Unknown sampling strategy '{sampling['strategy']}'. Choose from {SAMPLING_STRATEGIES}"
        )
    if sampling["strategy"] in ("buffered_random", "labelled") and "points" not in sampling:
        raise ValueError(f"Sampling strategy '{sampling['strategy']}' needs a 'points' file")
    if "points" in sampling:
        sampling["points"] = _resolve(base_dir, sampling["points"])

    if sampling["strategy"] == "favorability":
        favorability = copy.deepcopy(FAVORABILITY)
        favorability.update(raw.get("favorability", {}))
    else:
        favorability = None

    categorical = {}
    for name, spec in raw.get("categorical_layers", {}).items():
        if "path" not in spec or "field" not in spec:
            raise ValueError(f"Categorical layer '{name}' needs 'path' and 'field'")
        categorical[name] = {
            "path": _resolve(base_dir, spec["path"]),
            "field": spec["field"],
            "fill_value": spec.get("fill_value")
        }

    derived = raw.get("derived", {})
    derived = {
        "slope": bool(derived.get("slope", False)),
        "aspect": bool(derived.get("aspect", False)),
        "distances": {
            name: _resolve(base_dir, vector) for name, vector in derived.get("distances", {}).items()
        }
    }

    model_params = dict(MODEL_CONFIG["params"])
    model_params.update(raw.get("model", {}))

    output_dir = _resolve(base_dir, raw.get("output_dir")) or OUTPUT_DIR / raw["name"]

    return {
        "name": raw["name"],
        "profile_name": profile_name,
        "profile": profile,
        "scheme_name": scheme_name,
        "scheme": copy.deepcopy(CLASSIFICATION_SCHEMES[scheme_name]),
        "boundary": _resolve(base_dir, raw["boundary"]),
        "crs": raw.get("crs"),
        "resolution": raw.get("resolution") or sampling["scale"],
        "layers": {name: _resolve(base_dir, p) for name, p in raw["layers"].items()},
        "categorical_layers": categorical,
        "nearest_layers": list(raw.get("nearest_layers", [])),
        "derived": derived,
        "sampling": sampling,
        "favorability": favorability,
        "model": model_params,
        "n_thresholds": raw.get("n_thresholds", ROC["n_thresholds"]),
        "output_dir": output_dir,
        "figures": raw.get("figures", True),
        "export_splits": bool(raw.get("export_splits", False))
    }


# =============================================================================
# PRINT CONFIGURATION SUMMARY
# =============================================================================

def print_config():
    """Print configuration summary."""
    print("=" * 60)
    print("SUSCEPTIBILITY MAPPING - CONFIGURATION")
    print("=" * 60)
    print(f"\nProfiles: {', '.join(PROFILES)}")
    for name, profile in PROFILES.items():
        print(f"   {name}: {profile['title']} "
              f"(scheme={profile['scheme']}, buffer={profile['buffer_m']} m)")
    print(f"\nModel: {MODEL_CONFIG['algorithm']}")
    print(f"   Trees: {MODEL_CONFIG['params']['n_estimators']}")
    print(f"   Bag fraction: {MODEL_CONFIG['params']['max_samples']}")
    print(f"   Min leaf population: {MODEL_CONFIG['params']['min_samples_leaf']}")
    print(f"\nSampling strategies: {', '.join(SAMPLING_STRATEGIES)}")
    print(f"   Train fraction: {SAMPLING['train_fraction']}")
    print(f"   ROC thresholds: {ROC['n_thresholds']}")
    print(f"\nClassification schemes:")
    for name, scheme in CLASSIFICATION_SCHEMES.items():
        print(f"   {name}: {scheme['thresholds']} -> {scheme['class_names']}")
    print(f"\nDirectories:")
    print(f"   Data: {DATA_DIR}")
    print(f"   Output: {OUTPUT_DIR}")
    print("=" * 60)


if __name__ == "__main__":
    print_config()
