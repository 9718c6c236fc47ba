"""
Training Sample Generation for Susceptibility Mapping
=====================================================

Builds binary-labelled training points and samples the predictor stack:
- buffered_random: inventory points (class 1) + random points outside
  buffers around them (class 0)
- favorability: synthetic points in the top and bottom percentile zones of
  a weighted favorability score
- labelled: points read from a CSV with a ``class`` column
- Raster sampling, random train/test split, class balance
"""

import json
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple, Union

import numpy as np
import pandas as pd
import geopandas as gpd
import shapely
from shapely import wkt
from shapely.geometry import shape
from shapely.ops import unary_union

from susceptibility.preprocessing import PredictorStack, StudyArea
from susceptibility.utils import get_logger, timer, normalize_array, read_vector
from susceptibility.zonation import mask_area_sqkm

logger = get_logger()

CLASS_COLUMN = "class"

# Rejection sampling draws this many candidates per missing point
OVERSAMPLE_FACTOR = 4
MAX_SAMPLING_ROUNDS = 1000


# =============================================================================
# POINT HELPERS
# =============================================================================

def label_points(
    points: gpd.GeoDataFrame,
    class_value: int,
    label_column: str,
    label: str
) -> gpd.GeoDataFrame:
    """Return a copy of ``points`` with the class and label columns set."""
    labelled = points.copy()
    labelled[CLASS_COLUMN] = int(class_value)
    labelled[label_column] = label
    return labelled


def random_points(region, n: int, seed: int, crs) -> gpd.GeoDataFrame:
    """
    Draw ``n`` uniformly distributed points inside a polygon.

    Candidates are drawn in the bounding box and rejected when they fall
    outside ``region``. The result is reproducible for a given seed.

    Raises
    ------
    ValueError
        If the region is empty or has no area
    """
    if n < 0:
        raise ValueError(f"Number of points must be non-negative, got {n}")
    if region is None or region.is_empty or region.area <= 0:
        raise ValueError("Cannot draw random points in an empty region")

    rng = np.random.default_rng(seed)
    minx, miny, maxx, maxy = region.bounds
    shapely.prepare(region)

    xs, ys = [], []
    found = 0
    rounds = 0
    while found < n:
        rounds += 1
        if rounds > MAX_SAMPLING_ROUNDS:
            raise ValueError(f"Could not place {n} random points in region after {MAX_SAMPLING_ROUNDS} rounds")

        batch = max(OVERSAMPLE_FACTOR * (n - found), 16)
        cx = rng.uniform(minx, maxx, batch)
        cy = rng.uniform(miny, maxy, batch)
        inside = shapely.contains_xy(region, cx, cy)
        xs.append(cx[inside])
        ys.append(cy[inside])
        found += int(inside.sum())

    x = np.concatenate(xs)[:n] if xs else np.empty(0)
    y = np.concatenate(ys)[:n] if ys else np.empty(0)
    return gpd.GeoDataFrame(geometry=gpd.points_from_xy(x, y), crs=crs)


def points_in_cells(
    mask: np.ndarray,
    transform,
    crs,
    n: int,
    seed: int
) -> gpd.GeoDataFrame:
    """
    Uniform random points over the cells where ``mask`` is True.

    Cells are drawn with replacement, then each point is placed uniformly
    inside its cell.
    """
    rows, cols = np.nonzero(mask)
    if rows.size == 0:
        raise ValueError("Cannot draw random points in an empty zone")

    rng = np.random.default_rng(seed)
    picks = rng.integers(0, rows.size, n)
    col_offset = cols[picks] + rng.uniform(0, 1, n)
    row_offset = rows[picks] + rng.uniform(0, 1, n)
    xs, ys = transform * (col_offset, row_offset)
    return gpd.GeoDataFrame(geometry=gpd.points_from_xy(xs, ys), crs=crs)


def read_points(path: Union[str, Path], crs=None) -> gpd.GeoDataFrame:
    """Read a point layer, optionally reprojected to ``crs``."""
    path = Path(path)
    points = read_vector(path, "Point file")
    if points.crs is None:
        raise ValueError(f"Point file has no CRS: {path}")
    if crs is not None:
        points = points.to_crs(crs)
    return points


def _geometry_from_csv(frame: pd.DataFrame) -> gpd.GeoSeries:
    columns = {c.lower(): c for c in frame.columns}
    for x_name, y_name in (("longitude", "latitude"), ("lon", "lat"), ("x", "y")):
        if x_name in columns and y_name in columns:
            xs = pd.to_numeric(frame[columns[x_name]], errors='coerce')
            ys = pd.to_numeric(frame[columns[y_name]], errors='coerce')
            return gpd.GeoSeries(gpd.points_from_xy(xs, ys), index=frame.index, crs="EPSG:4326")
    if ".geo" in frame.columns:
        geoms = [shape(json.loads(value)) if isinstance(value, str) else None for value in frame[".geo"]]
        return gpd.GeoSeries(geoms, index=frame.index, crs="EPSG:4326")
    if "geometry" in columns:
        geoms = [wkt.loads(value) if isinstance(value, str) else None for value in frame[columns["geometry"]]]
        return gpd.GeoSeries(geoms, index=frame.index, crs="EPSG:4326")
    raise ValueError("CSV needs longitude/latitude columns, a '.geo' GeoJSON column or a WKT 'geometry' column")


# =============================================================================
# FAVORABILITY SCORE
# =============================================================================

def favorability_score(
    stack: PredictorStack,
    weights: Dict[str, float],
    invert: Iterable[str] = ()
) -> np.ndarray:
    """
    Weighted sum of min-max normalised predictor bands.

    Each band is normalised over the study area (a constant band becomes
    0.5) and clamped to [0, 1]. Bands in ``invert`` contribute
    ``1 - normalised``. Cells outside the valid area are NaN.
    """
    missing = [name for name in weights if name not in stack.band_names]
    if missing:
        raise ValueError(f"Favorability weights name bands not in the stack: {missing}")

    invert = set(invert)
    valid = stack.valid_mask()
    if not valid.any():
        raise ValueError("Predictor stack has no valid cells")

    score = np.zeros(stack.shape, dtype=np.float64)
    for name, weight in weights.items():
        band = np.where(valid, stack.band(name), np.nan)
        normalized = np.clip(normalize_array(band, method="minmax"), 0, 1)
        if name in invert:
            normalized = 1 - normalized
        score += weight * normalized
        logger.info(f"  {name:<15} weight={weight:.2f}{' (inverted)' if name in invert else ''}")

    score[~valid] = np.nan
    return score.astype(np.float32)


# =============================================================================
# STACK SAMPLING
# =============================================================================

@timer
def sample_stack(
    stack: PredictorStack,
    points: gpd.GeoDataFrame,
    properties: Iterable[str] = (CLASS_COLUMN,)
) -> pd.DataFrame:
    """
    Read every band at each point.

    Points whose cell is outside the grid or study area, or where any band
    is NaN, are dropped.

    Parameters
    ----------
    stack : PredictorStack
        Predictor bands
    points : GeoDataFrame
        Points carrying ``properties``
    properties : iterable of str
        Point attributes copied into the output

    Returns
    -------
    pd.DataFrame
        Columns: longitude, latitude, <bands>, <properties>
    """
    properties = list(properties)
    if points.empty:
        return pd.DataFrame(columns=["longitude", "latitude"] + stack.band_names + properties)

    projected = points.to_crs(stack.crs)
    rows, cols = stack.index(projected.geometry.x.values, projected.geometry.y.values)
    n_rows, n_cols = stack.shape

    inside = (rows >= 0) & (rows < n_rows) & (cols >= 0) & (cols < n_cols)
    keep = np.zeros(len(points), dtype=bool)
    keep[inside] = stack.valid_mask()[rows[inside], cols[inside]]

    kept = projected[keep]
    values = stack.data[:, rows[keep], cols[keep]].T

    geographic = kept.to_crs("EPSG:4326")
    samples = pd.DataFrame({
        'longitude': geographic.geometry.x.values,
        'latitude': geographic.geometry.y.values
    })
    for i, name in enumerate(stack.band_names):
        samples[name] = values[:, i]
    for prop in properties:
        samples[prop] = kept[prop].values

    dropped = len(points) - len(samples)
    if dropped:
        logger.info(f"  Dropped {dropped} points without valid predictor values")
    logger.info(f"  Sampled {len(samples)} points x {len(stack.band_names)} bands")
    return samples


def add_random_column(samples: pd.DataFrame, seed: int = 42) -> pd.DataFrame:
    """Copy of ``samples`` with a uniform [0, 1) ``rand`` column."""
    samples = samples.copy()
    samples['rand'] = np.random.default_rng(seed).uniform(0, 1, len(samples))
    return samples


def random_split(
    samples: pd.DataFrame,
    fraction: float = 0.7,
    seed: int = 42
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Split on a uniform ``rand`` column.

    The column is added from ``seed`` unless ``samples`` already carries
    one. Training rows have ``rand < fraction``, test rows ``rand >= fraction``.
    """
    if not 0 < fraction < 1:
        raise ValueError(f"Train fraction must be in (0, 1), got {fraction}")

    if 'rand' not in samples.columns:
        samples = add_random_column(samples, seed)
    train = samples[samples['rand'] < fraction].reset_index(drop=True)
    test = samples[samples['rand'] >= fraction].reset_index(drop=True)
    return train, test


def class_balance(samples: pd.DataFrame, class_column: str = CLASS_COLUMN) -> Dict[int, int]:
    """Count of rows per class value (0 and 1 always present)."""
    counts = {0: 0, 1: 0}
    for value, count in samples[class_column].value_counts().items():
        counts[int(value)] = int(count)
    return counts


# =============================================================================
# TRAINING SAMPLER
# =============================================================================

class TrainingSampler:
    """
    Generate labelled training points for one study profile.

    Attributes
    ----------
    study_area : StudyArea
        Boundary points are restricted to
    profile : dict
        Study profile (label column and labels)
    sampling : dict
        Sampling settings (strategy, points, buffer_m, seed)
    favorability : dict, optional
        Favorability settings, used by the 'favorability' strategy
    score : np.ndarray
        Favorability score of the last 'favorability' run, else None

    Example
    -------
    >>> sampler = TrainingSampler(area, PROFILES["landslide"],
    ...                           {"strategy": "buffered_random", "points": "slides.shp",
    ...                            "buffer_m": 100, "seed": 42})
    >>> points = sampler.generate(stack)
    """

    def __init__(
        self,
        study_area: StudyArea,
        profile: dict,
        sampling: dict,
        favorability: Optional[dict] = None
    ):
        self.study_area = study_area
        self.profile = profile
        self.sampling = sampling
        self.favorability_config = favorability
        self.label_column = profile['label_column']
        self.score = None
        self.zone_areas = {}

        logger.info(f"TrainingSampler initialized (strategy: {sampling['strategy']})")

    def generate(self, stack: Optional[PredictorStack] = None) -> gpd.GeoDataFrame:
        """Run the configured strategy."""
        strategy = self.sampling['strategy']
        if strategy == "buffered_random":
            points = self.buffered_random()
        elif strategy == "favorability":
            if stack is None:
                raise ValueError("The favorability strategy needs a predictor stack")
            points = self.favorability(stack)
        elif strategy == "labelled":
            points = self.labelled()
        else:
            raise ValueError(f"Unknown sampling strategy: {strategy}")

        balance = class_balance(points)
        logger.info(f"  Class 1 ({self.profile['positive_label']}): {balance[1]}")
        logger.info(f"  Class 0 ({self.profile['negative_label']}): {balance[0]}")
        return points

    def _clip_to_study_area(self, points: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
        points = points.to_crs(self.study_area.crs)
        inside = points.geometry.intersects(self.study_area.geometry)
        if (~inside).any():
            logger.info(f"  Dropped {int((~inside).sum())} points outside the study area")
        return points[inside].reset_index(drop=True)

    @timer
    def buffered_random(self) -> gpd.GeoDataFrame:
        """
        Inventory points as class 1, random class 0 points outside their buffers.

        Negatives match the positive count and avoid ``buffer_m`` metres
        around every positive.
        """
        positives = self._clip_to_study_area(read_points(self.sampling['points']))
        if positives.empty:
            raise ValueError("No inventory points fall inside the study area")
        positives = label_points(
            positives[['geometry']], 1, self.label_column, self.profile['positive_label']
        )

        metric_crs = self.study_area.metric_crs()
        area = self.study_area.to_crs(metric_crs).geometry
        exclusion = unary_union(list(positives.to_crs(metric_crs).buffer(self.sampling['buffer_m'])))
        region = area.difference(exclusion)

        logger.info(f"  Positives: {len(positives)}, buffer: {self.sampling['buffer_m']} m")
        negatives = random_points(region, len(positives), self.sampling['seed'], metric_crs)
        negatives = label_points(
            negatives.to_crs(self.study_area.crs), 0, self.label_column, self.profile['negative_label']
        )

        return gpd.GeoDataFrame(
            pd.concat([positives, negatives], ignore_index=True), crs=self.study_area.crs
        )

    @timer
    def favorability(self, stack: PredictorStack) -> gpd.GeoDataFrame:
        """
        Synthetic points in the high (>= p_high) and low (<= p_low) score zones.
        """
        config = self.favorability_config
        logger.info("Computing favorability score...")
        score = favorability_score(stack, config['weights'], config.get('invert', ()))
        self.score = score

        values = score[~np.isnan(score)]
        p_low, p_high = np.percentile(values, [config['low_percentile'], config['high_percentile']])
        logger.info(f"  Score range: {values.min():.3f} - {values.max():.3f}")
        logger.info(f"  p{config['low_percentile']}={p_low:.3f}, p{config['high_percentile']}={p_high:.3f}")

        with np.errstate(invalid='ignore'):
            high_zone = score >= p_high
            low_zone = score <= p_low

        self.zone_areas = {
            'high_sqkm': mask_area_sqkm(high_zone, stack.transform, stack.crs),
            'low_sqkm': mask_area_sqkm(low_zone, stack.transform, stack.crs)
        }
        logger.info(f"  High zone: {self.zone_areas['high_sqkm']:.2f} sq km")
        logger.info(f"  Low zone: {self.zone_areas['low_sqkm']:.2f} sq km")

        n = config['points_per_class']
        high = points_in_cells(high_zone, stack.transform, stack.crs, n, config['high_seed'])
        low = points_in_cells(low_zone, stack.transform, stack.crs, n, config['low_seed'])

        high = label_points(high, 1, self.label_column, self.profile['positive_label'])
        low = label_points(low, 0, self.label_column, self.profile['negative_label'])
        return gpd.GeoDataFrame(pd.concat([high, low], ignore_index=True), crs=stack.crs)

    @timer
    def labelled(self) -> gpd.GeoDataFrame:
        """Points from a CSV with a numeric ``class`` column."""
        path = Path(self.sampling['points'])
        if not path.exists():
            raise FileNotFoundError(f"Training CSV not found: {path}")

        if path.suffix.lower() == ".csv":
            frame = pd.read_csv(path)
            if CLASS_COLUMN not in frame.columns:
                raise ValueError(f"Training CSV has no '{CLASS_COLUMN}' column: {path}")
            geometry = _geometry_from_csv(frame)
            # A WKT text column would clash with the parsed geometry
            frame = frame.drop(columns=[c for c in frame.columns if c.lower() == "geometry"])
            points = gpd.GeoDataFrame(frame, geometry=geometry)
        else:
            points = read_points(path)
            if CLASS_COLUMN not in points.columns:
                raise ValueError(f"Training points have no '{CLASS_COLUMN}' attribute: {path}")

        classes = pd.to_numeric(points[CLASS_COLUMN], errors='coerce')
        invalid = classes.isna() | points.geometry.isna()
        if invalid.any():
            logger.warning(f"  Skipping {int(invalid.sum())} rows without a numeric class or location")
        points = points[~invalid].copy()
        points[CLASS_COLUMN] = classes[~invalid].astype(int)
        points[self.label_column] = np.where(
            points[CLASS_COLUMN] == 1, self.profile['positive_label'], self.profile['negative_label']
        )

        points = self._clip_to_study_area(points[[CLASS_COLUMN, self.label_column, 'geometry']])
        if points.empty:
            raise ValueError("No labelled points fall inside the study area")
        return points
