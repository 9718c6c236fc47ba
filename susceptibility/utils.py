"""
Utility Functions for Susceptibility Mapping
============================================

Contains helper functions for:
- Logging setup
- Timer decorators
- Raster validation and reading
- Vector reading
- Array normalization and statistics
- File operations
"""

import sys
import time
import logging
import functools
from pathlib import Path
from typing import Optional, Union
from datetime import datetime

import numpy as np
import geopandas as gpd
import rasterio
from rasterio.errors import RasterioIOError


LOGGER_NAME = "Susceptibility"


# =============================================================================
# LOGGING SETUP
# =============================================================================

def setup_logging(
    log_file: Optional[Path] = None,
    level: str = "INFO",
    format_string: Optional[str] = None
) -> logging.Logger:
    """
    Setup logging configuration.

    Parameters
    ----------
    log_file : Path, optional
        Path to log file. If None, logs to console only.
    level : str
        Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    format_string : str, optional
        Custom format string for log messages

    Returns
    -------
    logging.Logger
        Configured logger instance
    """
    if format_string is None:
        format_string = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper()))

    # Clear existing handlers
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG)
    formatter = logging.Formatter(format_string, datefmt="%Y-%m-%d %H:%M:%S")
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode='a')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def get_logger() -> logging.Logger:
    """Return the shared package logger, configuring it on first use."""
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        setup_logging()
    return logger


logger = get_logger()


# =============================================================================
# TIMER DECORATOR
# =============================================================================

def timer(func):
    """
    Decorator to measure and log function execution time.

    Usage
    -----
    @timer
    def my_function():
        pass
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.time()
        logger.info(f"Starting: {func.__name__}")

        result = func(*args, **kwargs)

        logger.info(f"Completed: {func.__name__} in {format_duration(time.time() - start_time)}")
        return result

    return wrapper


# =============================================================================
# RASTER UTILITIES
# =============================================================================

def validate_raster(filepath: Union[str, Path]) -> dict:
    """
    Validate a raster file and return its properties.

    Parameters
    ----------
    filepath : str or Path
        Path to raster file

    Returns
    -------
    dict
        Dictionary containing raster properties:
        - valid: bool
        - width, height: int
        - bands: int
        - crs: str
        - bounds: tuple
        - resolution: tuple
        - nodata: float
        - dtype: str
    """
    filepath = Path(filepath)
    result = {"valid": False, "path": str(filepath)}

    if not filepath.exists():
        result["error"] = "File does not exist"
        return result

    try:
        with rasterio.open(filepath) as src:
            result.update({
                "valid": True,
                "width": src.width,
                "height": src.height,
                "bands": src.count,
                "crs": str(src.crs),
                "bounds": src.bounds,
                "resolution": src.res,
                "nodata": src.nodata,
                "dtype": str(src.dtypes[0]),
                "transform": src.transform
            })
    except RasterioIOError as e:
        result["error"] = str(e)

    return result


def read_raster_as_array(
    filepath: Union[str, Path],
    band: int = 1,
    masked: bool = True
) -> np.ndarray:
    """
    Read raster band as numpy array.

    Parameters
    ----------
    filepath : str or Path
        Path to raster file
    band : int
        Band number (1-indexed)
    masked : bool
        If True, return masked array with nodata masked

    Returns
    -------
    np.ndarray
        Raster data as numpy array
    """
    with rasterio.open(filepath) as src:
        data = src.read(band)
        if masked and src.nodata is not None:
            data = np.ma.masked_equal(data, src.nodata)
        return data


def write_geotiff(
    data: np.ndarray,
    output_path: Union[str, Path],
    transform,
    crs,
    nodata: float = -9999,
    dtype: str = "float32",
    description: str = ""
) -> Path:
    """
    Write a single-band array to a compressed GeoTIFF.

    NaN cells (and masked cells) are written as ``nodata``.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    if isinstance(data, np.ma.MaskedArray):
        data = data.filled(np.nan if np.issubdtype(data.dtype, np.floating) else nodata)

    if np.issubdtype(data.dtype, np.floating):
        data = np.where(np.isnan(data), nodata, data)
    data = data.astype(dtype)

    profile = {
        'driver': 'GTiff',
        'height': data.shape[0],
        'width': data.shape[1],
        'count': 1,
        'dtype': dtype,
        'crs': crs,
        'transform': transform,
        'nodata': nodata,
        'compress': 'lzw'
    }

    with rasterio.open(output_path, 'w', **profile) as dst:
        dst.write(data, 1)
        if description:
            dst.set_band_description(1, description)

    logger.info(f"  Saved: {output_path.name}")
    return output_path


# =============================================================================
# VECTOR UTILITIES
# =============================================================================

def read_vector(filepath: Union[str, Path], description: str = "Vector layer") -> gpd.GeoDataFrame:
    """
    Read a vector layer with geopandas.

    Raises
    ------
    FileNotFoundError
        If the file does not exist
    ValueError
        If the file exists but cannot be opened as a vector layer
    """
    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"{description} not found: {filepath}")

    try:
        return gpd.read_file(filepath)
    except (OSError, RuntimeError, ValueError) as e:
        # pyogrio reports unreadable sources as RuntimeError, fiona as ValueError
        raise ValueError(f"Cannot read {description.lower()} {filepath.name}: {e}") from e


# =============================================================================
# FILE UTILITIES
# =============================================================================

def ensure_dir(path: Union[str, Path]) -> Path:
    """
    Ensure directory exists, create if necessary.

    Parameters
    ----------
    path : str or Path
        Directory path

    Returns
    -------
    Path
        Path object for the directory
    """
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


# =============================================================================
# DATA UTILITIES
# =============================================================================

def normalize_array(
    array: np.ndarray,
    method: str = "minmax",
    feature_range: tuple = (0, 1)
) -> np.ndarray:
    """
    Normalize array values, ignoring NaN and masked cells.

    Parameters
    ----------
    array : np.ndarray
        Input array
    method : str
        Normalization method: 'minmax', 'zscore', 'robust'
    feature_range : tuple
        Output range for minmax normalization

    Returns
    -------
    np.ndarray
        Normalized array. A constant layer maps to the middle of
        ``feature_range`` under 'minmax' and to zero otherwise.
    """
    if isinstance(array, np.ma.MaskedArray):
        mask = np.ma.getmaskarray(array)
        data = array.astype(float).filled(np.nan)
    else:
        mask = None
        data = np.asarray(array, dtype=float)

    if np.all(np.isnan(data)):
        raise ValueError("Cannot normalize an array with no valid values")

    if method == "minmax":
        min_val = np.nanmin(data)
        max_val = np.nanmax(data)
        if max_val - min_val > 0:
            normalized = (data - min_val) / (max_val - min_val)
            normalized = normalized * (feature_range[1] - feature_range[0]) + feature_range[0]
        else:
            normalized = np.where(np.isnan(data), np.nan, (feature_range[0] + feature_range[1]) / 2)

    elif method == "zscore":
        mean_val = np.nanmean(data)
        std_val = np.nanstd(data)
        if std_val > 0:
            normalized = (data - mean_val) / std_val
        else:
            normalized = np.where(np.isnan(data), np.nan, 0.0)

    elif method == "robust":
        median_val = np.nanmedian(data)
        q1 = np.nanpercentile(data, 25)
        q3 = np.nanpercentile(data, 75)
        iqr = q3 - q1
        if iqr > 0:
            normalized = (data - median_val) / iqr
        else:
            normalized = np.where(np.isnan(data), np.nan, 0.0)

    else:
        raise ValueError(f"Unknown normalization method: {method}")

    if mask is not None:
        normalized = np.ma.array(normalized, mask=mask)

    return normalized


def calculate_statistics(array: np.ndarray) -> dict:
    """
    Calculate basic statistics for array.

    Parameters
    ----------
    array : np.ndarray
        Input array

    Returns
    -------
    dict
        Dictionary with statistics. ``count`` is zero and the other
        entries are NaN when no valid cell remains.
    """
    if isinstance(array, np.ma.MaskedArray):
        data = array.compressed().astype(float)
    else:
        data = np.asarray(array, dtype=float).flatten()
    data = data[~np.isnan(data)]

    if data.size == 0:
        stats = {key: float("nan") for key in ("min", "max", "mean", "median", "std", "q1", "q3")}
        stats["count"] = 0
        return stats

    return {
        "count": len(data),
        "min": float(np.min(data)),
        "max": float(np.max(data)),
        "mean": float(np.mean(data)),
        "median": float(np.median(data)),
        "std": float(np.std(data)),
        "q1": float(np.percentile(data, 25)),
        "q3": float(np.percentile(data, 75))
    }


# =============================================================================
# TIMESTAMP UTILITIES
# =============================================================================

def get_timestamp() -> str:
    """Get current timestamp string."""
    return datetime.now().strftime("%Y%m%d_%H%M%S")


def format_duration(seconds: float) -> str:
    """Format duration in human-readable format."""
    if seconds < 60:
        return f"{seconds:.2f} seconds"
    elif seconds < 3600:
        return f"{seconds/60:.2f} minutes"
    else:
        return f"{seconds/3600:.2f} hours"
