"""
Feature Engineering Module for Susceptibility Mapping
=====================================================

Derives predictor rasters that studies often supply pre-computed:
- Slope (degrees)
- Aspect (degrees clockwise from north)
- Euclidean distance to line/point features (rivers, roads, lineaments)

All outputs share the DEM grid and are written as float32 GeoTIFFs.
"""

from pathlib import Path
from typing import Dict, Optional, Tuple, Union

import numpy as np
import rasterio
from rasterio.features import rasterize
from scipy import ndimage
from shapely.geometry import mapping

from susceptibility.utils import (
    get_logger, timer, ensure_dir, validate_raster,
    read_raster_as_array, read_vector, calculate_statistics, write_geotiff
)

logger = get_logger()

# Approximate metres per degree, for DEMs in geographic coordinates
METERS_PER_DEGREE = 111320.0


class FeatureEngineer:
    """
    Compute terrain-derived and distance predictors from a DEM.

    Attributes
    ----------
    dem_path : Path
        Path to DEM raster
    cell_size : tuple of float
        (x, y) cell size in metres
    nodata : float
        NoData value for outputs

    Example
    -------
    >>> engineer = FeatureEngineer("dem.tif")
    >>> engineer.compute_all_features("outputs/features", {"dfriver": "rivers.shp"})
    """

    def __init__(
        self,
        dem_path: Union[str, Path],
        nodata: float = -9999
    ):
        self.dem_path = Path(dem_path)
        self.nodata = nodata

        dem_info = validate_raster(dem_path)
        if not dem_info['valid']:
            if not self.dem_path.exists():
                raise FileNotFoundError(f"DEM not found: {self.dem_path}")
            raise ValueError(f"Invalid DEM: {dem_info.get('error')}")

        self.width = dem_info['width']
        self.height = dem_info['height']
        self.transform = dem_info['transform']

        with rasterio.open(self.dem_path) as src:
            self.crs = src.crs

        self.cell_size = self._metric_cell_size(dem_info)

        dem = read_raster_as_array(dem_path, masked=True)
        if not isinstance(dem, np.ma.MaskedArray):
            dem = np.ma.array(dem)
        self.dem = np.ma.masked_invalid(dem.astype(np.float64))

        logger.info("FeatureEngineer initialized")
        logger.info(f"  DEM: {self.dem_path.name}")
        logger.info(f"  Size: {self.width}x{self.height}")
        logger.info(f"  Cell size: {self.cell_size[0]:.2f}m x {self.cell_size[1]:.2f}m")

    # =========================================================================
    # HELPER METHODS
    # =========================================================================

    def _metric_cell_size(self, dem_info: dict) -> Tuple[float, float]:
        res_x, res_y = dem_info['resolution']
        if self.crs is not None and self.crs.is_geographic:
            bounds = dem_info['bounds']
            center_lat = np.radians((bounds.bottom + bounds.top) / 2)
            return res_x * METERS_PER_DEGREE * np.cos(center_lat), res_y * METERS_PER_DEGREE
        return res_x, res_y

    def _save_raster(self, data: np.ndarray, output_path: Path, description: str = "") -> Path:
        """Save array as GeoTIFF on the DEM grid."""
        return write_geotiff(
            data, output_path, self.transform, self.crs,
            nodata=self.nodata, dtype='float32', description=description
        )

    def _get_gradient(self) -> Tuple[np.ndarray, np.ndarray]:
        """dz/dx and dz/dy from 3x3 Sobel kernels (y positive northwards)."""
        cell_x, cell_y = self.cell_size

        kernel_x = np.array([[-1, 0, 1],
                             [-2, 0, 2],
                             [-1, 0, 1]], dtype=np.float64)

        # Rows increase southwards, so the kernel is flipped for a north-positive gradient
        kernel_y = np.array([[1, 2, 1],
                             [0, 0, 0],
                             [-1, -2, -1]], dtype=np.float64)

        dem_data = self.dem.filled(np.nan)

        # Integer weights keep flat ground exactly zero; scale afterwards
        dz_dx = ndimage.correlate(dem_data, kernel_x, mode='nearest') / (8 * cell_x)
        dz_dy = ndimage.correlate(dem_data, kernel_y, mode='nearest') / (8 * cell_y)

        return dz_dx, dz_dy

    # =========================================================================
    # TERRAIN DERIVATIVES
    # =========================================================================

    def slope(self) -> np.ma.MaskedArray:
        """Slope in degrees, masked where the DEM is undefined."""
        dz_dx, dz_dy = self._get_gradient()
        slope_deg = np.degrees(np.arctan(np.sqrt(dz_dx**2 + dz_dy**2)))
        return np.ma.masked_invalid(np.ma.array(slope_deg, mask=self.dem.mask))

    def aspect(self) -> np.ma.MaskedArray:
        """
        Aspect in degrees clockwise from north (0-360).

        Flat cells are set to -1.
        """
        dz_dx, dz_dy = self._get_gradient()

        # Downslope direction points against the gradient
        aspect_deg = np.degrees(np.arctan2(-dz_dx, -dz_dy)) % 360

        flat_mask = (np.abs(dz_dx) < 1e-8) & (np.abs(dz_dy) < 1e-8)
        aspect_deg[flat_mask] = -1

        return np.ma.masked_invalid(np.ma.array(aspect_deg, mask=self.dem.mask))

    @timer
    def compute_slope(self, output_path: Union[str, Path]) -> Path:
        """
        Compute slope in degrees and write it to ``output_path``.

        Slope = arctan(sqrt(dz/dx² + dz/dy²))
        """
        output_path = Path(output_path)
        logger.info("Computing slope...")

        slope_deg = self.slope()

        stats = calculate_statistics(slope_deg)
        logger.info(f"  Min: {stats['min']:.1f}°, Max: {stats['max']:.1f}°, Mean: {stats['mean']:.1f}°")

        return self._save_raster(slope_deg, output_path, "Slope (degrees)")

    @timer
    def compute_aspect(self, output_path: Union[str, Path]) -> Path:
        """Compute aspect in degrees and write it to ``output_path``."""
        output_path = Path(output_path)
        logger.info("Computing aspect...")

        return self._save_raster(self.aspect(), output_path, "Aspect (degrees from N)")

    # =========================================================================
    # DISTANCE TO FEATURES
    # =========================================================================

    def distance_to_features(self, vector_path: Union[str, Path]) -> np.ma.MaskedArray:
        """
        Euclidean distance (metres) from every cell to the nearest feature.

        Lines and points are burned onto the DEM grid (all touched cells),
        then a distance transform scaled by the cell size is applied.
        """
        vector_path = Path(vector_path)
        features = read_vector(vector_path)
        if features.crs is not None and self.crs is not None:
            features = features.to_crs(self.crs)

        shapes = [
            (mapping(geom), 1) for geom in features.geometry
            if geom is not None and not geom.is_empty
        ]
        if not shapes:
            raise ValueError(f"No features to measure distance from in {vector_path.name}")

        burned = rasterize(
            shapes, out_shape=(self.height, self.width), transform=self.transform,
            fill=0, all_touched=True, dtype='uint8'
        )
        if not burned.any():
            raise ValueError(f"No feature of {vector_path.name} falls on the DEM grid")

        distance = ndimage.distance_transform_edt(burned == 0, sampling=(self.cell_size[1], self.cell_size[0]))
        return np.ma.array(distance, mask=self.dem.mask)

    @timer
    def compute_distance_to_features(
        self,
        vector_path: Union[str, Path],
        output_path: Union[str, Path]
    ) -> Path:
        """
        Compute the distance-to-feature raster and write it.

        Parameters
        ----------
        vector_path : str or Path
            Line or point layer (rivers, roads, lineaments)
        output_path : str or Path
            Output raster path

        Returns
        -------
        Path
            Path to distance raster
        """
        output_path = Path(output_path)
        logger.info(f"Computing distance to {Path(vector_path).stem}...")

        distance = self.distance_to_features(vector_path)

        stats = calculate_statistics(distance)
        logger.info(f"  Min: {stats['min']:.0f}m, Max: {stats['max']:.0f}m")

        return self._save_raster(distance, output_path, f"Distance to {Path(vector_path).stem} (m)")

    # =========================================================================
    # COMPUTE ALL FEATURES
    # =========================================================================

    @timer
    def compute_all_features(
        self,
        output_dir: Union[str, Path],
        feature_vectors: Optional[Dict[str, Union[str, Path]]] = None,
        slope: bool = True,
        aspect: bool = True
    ) -> Dict[str, Path]:
        """
        Compute the requested derived predictors.

        Parameters
        ----------
        output_dir : str or Path
            Output directory
        feature_vectors : dict, optional
            {band name: vector path} for distance rasters, e.g.
            {"dfriver": "rivers.shp"}
        slope, aspect : bool
            Whether to derive slope and aspect from the DEM

        Returns
        -------
        dict
            Dictionary of {feature_name: path}
        """
        output_dir = ensure_dir(output_dir)

        logger.info("=" * 60)
        logger.info("COMPUTING DERIVED FEATURES")
        logger.info("=" * 60)

        features = {}

        if slope:
            features['slope'] = self.compute_slope(output_dir / "slope.tif")
        if aspect:
            features['aspect'] = self.compute_aspect(output_dir / "aspect.tif")

        for name, vector_path in (feature_vectors or {}).items():
            features[name] = self.compute_distance_to_features(vector_path, output_dir / f"{name}.tif")

        for name, path in features.items():
            logger.info(f"  {name}: {path}")

        return features


# =============================================================================
# MAIN
# =============================================================================

if __name__ == "__main__":
    print("FeatureEngineer module")
    print("Usage: engineer = FeatureEngineer('dem.tif')")
    print("       features = engineer.compute_all_features('output_dir', {'dfriver': 'rivers.shp'})")
