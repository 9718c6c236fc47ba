"""
Data Preprocessing Module for Susceptibility Mapping
====================================================

Builds the predictor stack over a study area:
- Study-area boundary (dissolved union of all features)
- Raster clipping to the boundary
- Alignment of every layer onto one reference grid
- Categorical vector layers encoded as integer rasters
- Stack diagnostics (value ranges per band)
"""

import math
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import numpy as np
import pandas as pd
import geopandas as gpd
import rasterio
from rasterio.crs import CRS
from rasterio.enums import Resampling
from rasterio.features import geometry_mask, rasterize
from rasterio.mask import mask as mask_raster
from rasterio.transform import from_origin
from rasterio.warp import calculate_default_transform, reproject
from shapely.geometry import mapping
from shapely.ops import unary_union

from susceptibility.config import PROCESSING
from susceptibility.utils import get_logger, timer, validate_raster, read_vector, calculate_statistics

logger = get_logger()


RESAMPLING_METHODS = {
    'nearest': Resampling.nearest,
    'bilinear': Resampling.bilinear,
    'cubic': Resampling.cubic,
    'average': Resampling.average
}


# =============================================================================
# STUDY AREA
# =============================================================================

class StudyArea:
    """
    Study-area boundary dissolved into a single geometry.

    Attributes
    ----------
    geometry : shapely geometry
        Union of all boundary features
    crs : pyproj.CRS
        Coordinate reference system of ``geometry``

    Example
    -------
    >>> area = StudyArea.from_file("boundary.shp")
    >>> area.to_crs("EPSG:32643").bounds
    """

    def __init__(self, geometry, crs):
        if geometry is None or geometry.is_empty:
            raise ValueError("Study area geometry is empty")
        self.geometry = geometry
        self.crs = crs

    @classmethod
    def from_file(cls, path: Union[str, Path], crs=None) -> "StudyArea":
        """Read a boundary layer and dissolve it into one geometry."""
        path = Path(path)
        gdf = read_vector(path, "Boundary file")
        if gdf.empty:
            raise ValueError(f"Boundary file has no features: {path}")
        if gdf.crs is None:
            raise ValueError(f"Boundary file has no CRS: {path}")
        if crs is not None:
            gdf = gdf.to_crs(crs)

        geometry = unary_union([geom for geom in gdf.geometry if geom is not None])
        logger.info(f"Study area loaded: {path.name} ({len(gdf)} features, CRS {gdf.crs})")
        return cls(geometry, gdf.crs)

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        return self.geometry.bounds

    def to_gdf(self) -> gpd.GeoDataFrame:
        return gpd.GeoDataFrame(geometry=[self.geometry], crs=self.crs)

    def to_crs(self, crs) -> "StudyArea":
        """Return a copy of the study area reprojected to ``crs``."""
        reprojected = self.to_gdf().to_crs(crs)
        return StudyArea(reprojected.geometry.iloc[0], reprojected.crs)

    def metric_crs(self):
        """Local UTM zone, used for buffering in metres."""
        gdf = self.to_gdf()
        if gdf.crs.is_projected:
            return gdf.crs
        return gdf.estimate_utm_crs()


# =============================================================================
# PREDICTOR STACK
# =============================================================================

class PredictorStack:
    """
    Co-registered predictor bands over the study area.

    Attributes
    ----------
    band_names : list of str
        Band names in stack order
    data : np.ndarray
        float32 array of shape (bands, rows, cols), NaN where undefined
    transform : affine.Affine
        Grid transform shared by every band
    crs : rasterio.crs.CRS
        Grid CRS
    study_mask : np.ndarray
        Boolean (rows, cols), True for cells inside the boundary
    """

    def __init__(self, band_names, data, transform, crs, study_mask):
        if data.ndim != 3 or data.shape[0] != len(band_names):
            raise ValueError(
                f"Stack data shape {data.shape} does not match {len(band_names)} band names"
            )
        if study_mask.shape != data.shape[1:]:
            raise ValueError("Study mask shape does not match the stack grid")
        self.band_names = list(band_names)
        self.data = data.astype(np.float32)
        self.transform = transform
        self.crs = crs
        self.study_mask = study_mask.astype(bool)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.data.shape[1], self.data.shape[2]

    def band(self, name: str) -> np.ndarray:
        if name not in self.band_names:
            raise KeyError(f"Band '{name}' not in stack {self.band_names}")
        return self.data[self.band_names.index(name)]

    def valid_mask(self) -> np.ndarray:
        """Cells inside the study area where no band is NaN."""
        return self.study_mask & ~np.any(np.isnan(self.data), axis=0)

    def pixel_table(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Flatten the valid cells into a feature matrix.

        Returns
        -------
        tuple
            (values of shape (n_valid, n_bands), flat indices of the cells)
        """
        valid = self.valid_mask().ravel()
        indices = np.flatnonzero(valid)
        values = self.data.reshape(len(self.band_names), -1)[:, indices].T
        return values, indices

    def index(self, xs, ys) -> Tuple[np.ndarray, np.ndarray]:
        """Row/column of the cells containing the given grid-CRS coordinates."""
        cols, rows = ~self.transform * (np.asarray(xs, dtype=float), np.asarray(ys, dtype=float))
        return np.atleast_1d(np.floor(rows).astype(int)), np.atleast_1d(np.floor(cols).astype(int))

    def describe(self) -> pd.DataFrame:
        """Value ranges of each band inside the study area."""
        rows = []
        for name, band in zip(self.band_names, self.data):
            stats = calculate_statistics(band[self.study_mask])
            rows.append({
                'band': name,
                'min': stats['min'],
                'max': stats['max'],
                'mean': stats['mean'],
                'count': stats['count']
            })
            logger.info(
                f"  {name:<20} min={stats['min']:.3f} max={stats['max']:.3f} "
                f"mean={stats['mean']:.3f} (n={stats['count']})"
            )
        return pd.DataFrame(rows)

    def to_geotiff(self, output_path: Union[str, Path], nodata: float = -9999) -> Path:
        """Write all bands to a multi-band float32 GeoTIFF."""
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        rows, cols = self.shape
        data = np.where(np.isnan(self.data), nodata, self.data).astype(np.float32)

        with rasterio.open(
            output_path, 'w', driver='GTiff', height=rows, width=cols,
            count=len(self.band_names), dtype='float32', crs=self.crs,
            transform=self.transform, nodata=nodata, compress='lzw'
        ) as dst:
            dst.write(data)
            for i, name in enumerate(self.band_names, start=1):
                dst.set_band_description(i, name)

        logger.info(f"  Saved: {output_path.name}")
        return output_path


# =============================================================================
# PREPROCESSOR
# =============================================================================

class DataPreprocessor:
    """
    Clip, align and stack predictor layers over a study area.

    Attributes
    ----------
    study_area : StudyArea
        Boundary used for clipping and masking
    resolution : float, optional
        Output cell size in CRS units. None keeps the first layer's grid.
    crs : str, optional
        Output CRS. None keeps the first layer's CRS.
    nodata : float
        NoData value for written rasters
    resampling : str
        Resampling for continuous rasters (default bilinear)
    categorical_resampling : str
        Resampling for the bands listed as ``nearest`` (default nearest)

    Example
    -------
    >>> area = StudyArea.from_file("boundary.shp")
    >>> preprocessor = DataPreprocessor(area)
    >>> stack = preprocessor.build_stack(
    ...     {"dem": "dem.tif", "slope": "slope.tif"},
    ...     categorical={"lithology": {"path": "litho.shp", "field": "DOMINANT_R"}}
    ... )
    """

    def __init__(
        self,
        study_area: StudyArea,
        resolution: Optional[float] = None,
        crs: Optional[str] = None,
        nodata: float = PROCESSING['nodata_value'],
        resampling: str = PROCESSING['resampling_method'],
        categorical_resampling: str = PROCESSING['resampling_categorical']
    ):
        for method in (resampling, categorical_resampling):
            if method not in RESAMPLING_METHODS:
                raise ValueError(f"Unknown resampling method: {method}")
        self.study_area = study_area
        self.resolution = resolution
        self.crs = CRS.from_user_input(crs) if crs is not None else None
        self.nodata = nodata
        self.resampling = resampling
        self.categorical_resampling = categorical_resampling
        self.category_lookups = {}

        logger.info("DataPreprocessor initialized")
        logger.info(f"  Target CRS: {self.crs or 'first layer'}")
        logger.info(f"  Target Resolution: {resolution or 'first layer'}")

    # =========================================================================
    # CLIPPING
    # =========================================================================

    def _boundary_shapes(self, crs) -> List[dict]:
        return [mapping(self.study_area.to_crs(crs).geometry)]

    def clip_raster(self, path: Union[str, Path]):
        """
        Clip a raster to the study area.

        Parameters
        ----------
        path : str or Path
            Input raster (band 1 is used)

        Returns
        -------
        tuple
            (float32 array with NaN outside the boundary or at nodata,
            transform, crs)
        """
        path = Path(path)
        info = validate_raster(path)
        if not info['valid']:
            if not path.exists():
                raise FileNotFoundError(f"Raster not found: {path}")
            raise ValueError(f"Invalid raster {path.name}: {info.get('error')}")

        with rasterio.open(path) as src:
            clipped, transform = mask_raster(
                src, self._boundary_shapes(src.crs), crop=True, filled=False, indexes=1
            )
            crs = src.crs

        data = clipped.astype(np.float32).filled(np.nan)
        logger.info(f"  Clipped {path.name}: {data.shape[1]}x{data.shape[0]}")
        return data, transform, crs

    # =========================================================================
    # ALIGNMENT
    # =========================================================================

    def reference_grid(self, path: Union[str, Path]) -> dict:
        """
        Grid definition taken from the first (reference) layer.

        Without an explicit CRS or resolution, the reference is the
        first layer clipped to the boundary, so its cells are kept as-is.
        """
        data, transform, src_crs = self.clip_raster(path)
        crs = self.crs or src_crs

        if self.resolution is None and crs == src_crs:
            return {
                'transform': transform,
                'crs': crs,
                'height': data.shape[0],
                'width': data.shape[1]
            }

        resolution = self.resolution
        if resolution is None:
            with rasterio.open(path) as src:
                dst_transform, _, _ = calculate_default_transform(
                    src.crs, crs, src.width, src.height, *src.bounds
                )
            resolution = abs(dst_transform.a)

        minx, miny, maxx, maxy = self.study_area.to_crs(crs).bounds
        width = max(1, int(math.ceil((maxx - minx) / resolution)))
        height = max(1, int(math.ceil((maxy - miny) / resolution)))
        return {
            'transform': from_origin(minx, maxy, resolution, resolution),
            'crs': crs,
            'height': height,
            'width': width
        }

    def align_to(
        self,
        reference: dict,
        path: Union[str, Path],
        resampling: str = "bilinear"
    ) -> np.ndarray:
        """
        Reproject band 1 of a raster onto the reference grid.

        Parameters
        ----------
        reference : dict
            Grid from :meth:`reference_grid`
        path : str or Path
            Raster to align
        resampling : str
            'nearest' for categorical layers, 'bilinear' for continuous ones

        Returns
        -------
        np.ndarray
            float32 array on the reference grid, NaN where undefined
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Raster not found: {path}")
        if resampling not in RESAMPLING_METHODS:
            raise ValueError(f"Unknown resampling method: {resampling}")

        destination = np.full((reference['height'], reference['width']), np.nan, dtype=np.float32)

        with rasterio.open(path) as src:
            source = src.read(1, masked=True).astype(np.float32).filled(np.nan)
            reproject(
                source=source,
                destination=destination,
                src_transform=src.transform,
                src_crs=src.crs,
                src_nodata=np.nan,
                dst_transform=reference['transform'],
                dst_crs=reference['crs'],
                dst_nodata=np.nan,
                resampling=RESAMPLING_METHODS[resampling]
            )

        return destination

    def study_mask(self, reference: dict) -> np.ndarray:
        """Boolean grid, True where the cell centre is inside the boundary."""
        return geometry_mask(
            self._boundary_shapes(reference['crs']),
            out_shape=(reference['height'], reference['width']),
            transform=reference['transform'],
            invert=True
        )

    # =========================================================================
    # CATEGORICAL VECTORS
    # =========================================================================

    @timer
    def encode_categorical(
        self,
        reference: dict,
        vector_path: Union[str, Path],
        field: str,
        fill_value: Optional[float] = None
    ) -> Tuple[np.ndarray, Dict]:
        """
        Rasterize a categorical polygon layer as integer class ids.

        Each distinct ``field`` value gets the index of its first
        appearance. Overlapping polygons keep the id of the earliest
        feature. Features whose value is missing get id 0.

        Parameters
        ----------
        reference : dict
            Target grid
        vector_path : str or Path
            Polygon layer
        field : str
            Attribute holding the category
        fill_value : float, optional
            Value for cells outside every polygon. None leaves them NaN.

        Returns
        -------
        tuple
            (float32 id raster, {category: id})
        """
        vector_path = Path(vector_path)
        gdf = read_vector(vector_path)
        if field not in gdf.columns:
            raise ValueError(f"Field '{field}' not found in {vector_path.name}")
        gdf = gdf.to_crs(reference['crs'])

        categories = pd.unique(gdf[field].dropna())
        lookup = {value: index for index, value in enumerate(categories)}
        ids = [lookup.get(value, 0) if pd.notna(value) else 0 for value in gdf[field]]

        # Burn id + 1 so that 0 marks "no polygon"; reversed so the first feature wins
        shapes = [
            (mapping(geom), class_id + 1)
            for geom, class_id in zip(gdf.geometry, ids)
            if geom is not None and not geom.is_empty
        ][::-1]

        shape = (reference['height'], reference['width'])
        if shapes:
            burned = rasterize(
                shapes, out_shape=shape, transform=reference['transform'],
                fill=0, dtype='int32'
            )
        else:
            burned = np.zeros(shape, dtype=np.int32)

        encoded = burned.astype(np.float32) - 1
        encoded[burned == 0] = np.nan if fill_value is None else fill_value

        logger.info(f"  Encoded {vector_path.name}[{field}]: {len(lookup)} categories")
        return encoded, lookup

    # =========================================================================
    # STACK
    # =========================================================================

    @timer
    def build_stack(
        self,
        layers: Dict[str, Union[str, Path]],
        categorical: Optional[Dict[str, dict]] = None,
        nearest: Optional[List[str]] = None
    ) -> PredictorStack:
        """
        Clip and align all layers into one float32 predictor stack.

        Parameters
        ----------
        layers : dict
            {band name: raster path}. The first entry defines the grid.
        categorical : dict, optional
            {band name: {"path", "field", "fill_value"}} polygon layers
        nearest : list of str, optional
            Class raster bands, resampled with ``categorical_resampling``

        Returns
        -------
        PredictorStack
        """
        if not layers:
            raise ValueError("At least one raster layer is required to build the stack")
        categorical = categorical or {}
        nearest = set(nearest or [])

        logger.info("=" * 60)
        logger.info("BUILDING PREDICTOR STACK")
        logger.info("=" * 60)

        names = list(layers)
        reference = self.reference_grid(layers[names[0]])
        logger.info(
            f"  Reference grid: {reference['width']}x{reference['height']} "
            f"({names[0]}, CRS {reference['crs']})"
        )

        bands = []
        for name in names:
            resampling = self.categorical_resampling if name in nearest else self.resampling
            logger.info(f"  Aligning: {name} ({resampling})")
            bands.append(self.align_to(reference, layers[name], resampling))

        for name, spec in categorical.items():
            encoded, lookup = self.encode_categorical(
                reference, spec['path'], spec['field'], spec.get('fill_value')
            )
            self.category_lookups[name] = lookup
            bands.append(encoded)
            names.append(name)

        study_mask = self.study_mask(reference)
        data = np.stack(bands).astype(np.float32)
        data[:, ~study_mask] = np.nan

        stack = PredictorStack(names, data, reference['transform'], reference['crs'], study_mask)
        logger.info(f"  Bands: {stack.band_names}")
        logger.info(f"  Study-area cells: {int(study_mask.sum())}, valid cells: {int(stack.valid_mask().sum())}")
        return stack


# =============================================================================
# MAIN
# =============================================================================

if __name__ == "__main__":
    print("DataPreprocessor module")
    print("Usage: area = StudyArea.from_file('boundary.shp')")
    print("       stack = DataPreprocessor(area).build_stack({'dem': 'dem.tif'})")
