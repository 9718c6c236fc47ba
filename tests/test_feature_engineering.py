import numpy as np
import geopandas as gpd
import pytest
import rasterio
from rasterio.transform import from_origin
from shapely.geometry import LineString

from susceptibility.feature_engineering import FeatureEngineer

from conftest import CELL, CRS, ORIGIN_Y, SIZE, cell_centre, write_raster


def planar_dem(tmp_path, gradient=0.5):
    """Elevation rising ``gradient`` metres per metre towards the east."""
    _, cols = np.mgrid[0:SIZE, 0:SIZE]
    return write_raster(tmp_path / "dem.tif", 1000.0 + gradient * CELL * cols)


class TestTerrain:
    def test_slope_of_a_plane(self, tmp_path):
        engineer = FeatureEngineer(planar_dem(tmp_path))
        slope = engineer.slope()

        interior = slope[1:-1, 1:-1]
        assert np.allclose(interior, np.degrees(np.arctan(0.5)))

    def test_aspect_faces_downslope(self, tmp_path):
        rising_east = FeatureEngineer(planar_dem(tmp_path)).aspect()
        assert np.allclose(rising_east[1:-1, 1:-1], 270.0)

        falling_east = FeatureEngineer(write_raster(
            tmp_path / "dem_west.tif", 1000.0 - 15.0 * np.mgrid[0:SIZE, 0:SIZE][1]
        )).aspect()
        assert np.allclose(falling_east[1:-1, 1:-1], 90.0)

    def test_flat_cells(self, tmp_path):
        engineer = FeatureEngineer(write_raster(tmp_path / "flat.tif", np.full((SIZE, SIZE), 250.0)))
        assert np.all(engineer.aspect() == -1)
        assert np.all(engineer.slope() == 0)

    def test_nodata_cells_stay_masked(self, tmp_path):
        data = np.full((SIZE, SIZE), 100.0)
        data[3, 4] = -9999.0
        slope = FeatureEngineer(write_raster(tmp_path / "holes.tif", data)).slope()
        assert slope.mask[3, 4]
        assert not slope.mask[10, 10]

    def test_compute_slope_writes_raster(self, tmp_path):
        engineer = FeatureEngineer(planar_dem(tmp_path))
        path = engineer.compute_slope(tmp_path / "features" / "slope.tif")

        with rasterio.open(path) as src:
            assert src.crs.to_epsg() == 32643
            assert (src.height, src.width) == (SIZE, SIZE)
            assert src.read(1)[10, 10] == pytest.approx(26.565, abs=1e-3)

    def test_geographic_dem_uses_metric_cells(self, tmp_path):
        # 0.001 degree cells between 29.96 N and 30.00 N
        rows, _ = np.mgrid[0:SIZE, 0:SIZE]
        dem = write_raster(
            tmp_path / "dem_wgs84.tif", 500.0 - 111.32 * rows,
            crs="EPSG:4326", transform=from_origin(75.0, 30.0, 0.001, 0.001)
        )
        engineer = FeatureEngineer(dem)

        cell_x, cell_y = engineer.cell_size
        assert cell_y == pytest.approx(111.32)
        assert cell_x == pytest.approx(111.32 * np.cos(np.radians(29.98)))

        # One metre of drop per metre southwards
        assert np.allclose(engineer.slope()[1:-1, 1:-1], 45.0, atol=0.01)

    def test_missing_dem(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            FeatureEngineer(tmp_path / "missing.tif")


class TestDistance:
    def test_distance_to_line(self, tmp_path):
        engineer = FeatureEngineer(planar_dem(tmp_path))
        x = cell_centre(0, 5)[0]
        path = tmp_path / "line.gpkg"
        gpd.GeoDataFrame(
            geometry=[LineString([(x, ORIGIN_Y - 10), (x, ORIGIN_Y - SIZE * CELL + 10)])], crs=CRS
        ).to_file(path, driver="GPKG")

        distance = engineer.distance_to_features(path)

        assert (distance[:, 5] == 0).all()
        assert distance[10, 9] > distance[10, 7] > 0
        assert distance[10, 9] <= 4 * CELL + 1e-6

    def test_compute_all_features(self, study_data, tmp_path):
        engineer = FeatureEngineer(study_data['dem'])
        features = engineer.compute_all_features(
            tmp_path / "features", {'dfriver': study_data['rivers']}, aspect=False
        )

        assert set(features) == {'slope', 'dfriver'}
        assert all(path.exists() for path in features.values())

    def test_features_off_grid(self, tmp_path):
        engineer = FeatureEngineer(planar_dem(tmp_path))
        path = tmp_path / "far.gpkg"
        gpd.GeoDataFrame(geometry=[LineString([(0, 0), (10, 10)])], crs=CRS).to_file(path, driver="GPKG")

        with pytest.raises(ValueError, match="falls on the DEM grid"):
            engineer.distance_to_features(path)
