"""
Susceptibility Zonation and Area Statistics
===========================================

Turns a probability raster into discrete classes and measures them:
- Threshold classification (class = 1 + number of thresholds below p)
- Per-cell area for projected and geographic grids
- Area and percentage of each class over the study area
- Boxed text summary table
"""

from typing import List, Sequence

import numpy as np
import pandas as pd
from pyproj import Geod
from rasterio.crs import CRS

from susceptibility.utils import get_logger

logger = get_logger()

NODATA_CLASS = 0

WGS84 = Geod(ellps="WGS84")


# =============================================================================
# CLASSIFICATION
# =============================================================================

def validate_thresholds(thresholds: Sequence[float]) -> np.ndarray:
    """Thresholds must be strictly increasing and lie inside (0, 1)."""
    thresholds = np.asarray(thresholds, dtype=float)
    if thresholds.ndim != 1 or thresholds.size == 0:
        raise ValueError("At least one class threshold is required")
    if np.any(thresholds <= 0) or np.any(thresholds >= 1):
        raise ValueError(f"Class thresholds must lie inside (0, 1): {thresholds.tolist()}")
    if np.any(np.diff(thresholds) <= 0):
        raise ValueError(f"Class thresholds must be strictly increasing: {thresholds.tolist()}")
    return thresholds


def classify_probability(probability: np.ndarray, thresholds: Sequence[float]) -> np.ndarray:
    """
    Map probabilities to classes 1..len(thresholds)+1.

    A cell's class is 1 plus the number of thresholds strictly below its
    probability, so a value equal to a threshold stays in the lower class.
    NaN cells get class 0.

    Parameters
    ----------
    probability : np.ndarray
        Probability raster in [0, 1]
    thresholds : sequence of float
        Class breaks, e.g. [0.33, 0.66] or [0.2, 0.4, 0.6, 0.8]

    Returns
    -------
    np.ndarray
        uint8 class raster
    """
    thresholds = validate_thresholds(thresholds)
    probability = np.asarray(probability, dtype=float)

    classes = 1 + np.searchsorted(thresholds, probability, side='left')
    classes = np.where(np.isnan(probability), NODATA_CLASS, classes)
    return classes.astype(np.uint8)


# =============================================================================
# AREAS
# =============================================================================

def pixel_area(transform, crs, shape) -> np.ndarray:
    """
    Area of each cell in square metres, shape (rows, cols).

    Projected grids have a constant cell area. Geographic grids use the
    geodesic area of each row's cell on the WGS84 ellipsoid.
    """
    rows, cols = shape
    crs = CRS.from_user_input(crs)

    if not crs.is_geographic:
        return np.full(shape, abs(transform.a * transform.e), dtype=np.float64)

    width = abs(transform.a)
    areas = np.empty(rows, dtype=np.float64)
    for row in range(rows):
        _, top = transform * (0, row)
        _, bottom = transform * (0, row + 1)
        lons = [0.0, width, width, 0.0]
        lats = [top, top, bottom, bottom]
        area, _ = WGS84.polygon_area_perimeter(lons, lats)
        areas[row] = abs(area)
    return np.repeat(areas[:, np.newaxis], cols, axis=1)


def mask_area_sqkm(mask: np.ndarray, transform, crs) -> float:
    """Total area in square kilometres of the cells where ``mask`` is True."""
    mask = np.asarray(mask, dtype=bool)
    return float(pixel_area(transform, crs, mask.shape)[mask].sum() / 1e6)


def area_statistics(
    classes: np.ndarray,
    study_mask: np.ndarray,
    transform,
    crs,
    class_names: List[str]
) -> pd.DataFrame:
    """
    Area and share of the study area for each susceptibility class.

    Percentages are relative to the whole study area, so they sum to less
    than 100 when some study cells have no class.

    Returns
    -------
    pd.DataFrame
        Columns ClassValue, ClassName, Area_sqkm, Percentage. The study
        area total is in ``df.attrs['total_area_sqkm']``.
    """
    study_mask = np.asarray(study_mask, dtype=bool)
    areas = pixel_area(transform, crs, classes.shape)
    total = float(areas[study_mask].sum() / 1e6)

    rows = []
    for class_value, class_name in enumerate(class_names, start=1):
        area = float(areas[(classes == class_value) & study_mask].sum() / 1e6)
        rows.append({
            'ClassValue': class_value,
            'ClassName': class_name,
            'Area_sqkm': area,
            'Percentage': (area / total * 100) if total > 0 else 0.0
        })

    stats = pd.DataFrame(rows, columns=['ClassValue', 'ClassName', 'Area_sqkm', 'Percentage'])
    stats.attrs['total_area_sqkm'] = total

    for row in stats.itertuples():
        logger.info(f"  {row.ClassName:<10} {row.Area_sqkm:>12.2f} sq km ({row.Percentage:.2f}%)")
    logger.info(f"  Total study area: {total:.2f} sq km")
    return stats


def format_area_table(stats: pd.DataFrame, total: float = None) -> str:
    """Boxed text table of class areas and percentages."""
    if total is None:
        total = stats.attrs.get('total_area_sqkm', float(stats['Area_sqkm'].sum()))

    border = "+" + "-" * 16 + "+" + "-" * 16 + "+" + "-" * 14 + "+"
    lines = [
        border,
        f"| {'Class':<14} | {'Area (sq km)':>14} | {'Percent':>12} |",
        border
    ]
    for row in stats.itertuples():
        lines.append(f"| {row.ClassName:<14} | {row.Area_sqkm:>14.2f} | {row.Percentage:>11.2f}% |")
    lines.append(border)
    lines.append(f"| {'Total':<14} | {total:>14.2f} | {stats['Percentage'].sum():>11.2f}% |")
    lines.append(border)
    return "\n".join(lines)
