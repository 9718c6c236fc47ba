"""
Shared fixtures: a small synthetic study on a 40 x 40 grid of 30 m cells
in UTM zone 43N.
"""

import json
from pathlib import Path

import numpy as np
import pandas as pd
import geopandas as gpd
import pytest
import rasterio
from rasterio.transform import from_origin
from shapely.geometry import LineString, Point, box

from susceptibility.preprocessing import PredictorStack, StudyArea

CRS = "EPSG:32643"
ORIGIN_X = 500000.0
ORIGIN_Y = 3300000.0
CELL = 30.0
SIZE = 40
NODATA = -9999.0


def grid_transform():
    return from_origin(ORIGIN_X, ORIGIN_Y, CELL, CELL)


def cell_centre(row, col):
    return ORIGIN_X + (col + 0.5) * CELL, ORIGIN_Y - (row + 0.5) * CELL


def write_raster(path, data, nodata=NODATA, crs=CRS, transform=None):
    path = Path(path)
    with rasterio.open(
        path, 'w', driver='GTiff', height=data.shape[0], width=data.shape[1],
        count=1, dtype='float32', crs=crs, transform=transform or grid_transform(),
        nodata=nodata
    ) as dst:
        dst.write(data.astype(np.float32), 1)
    return path


def boundary_polygon():
    # Two-cell margin inside the grid
    margin = 2 * CELL
    return box(
        ORIGIN_X + margin, ORIGIN_Y - SIZE * CELL + margin,
        ORIGIN_X + SIZE * CELL - margin, ORIGIN_Y - margin
    )


def inventory_points():
    offsets = [150.0, 420.0, 690.0, 960.0]
    return [Point(ORIGIN_X + dx, ORIGIN_Y - dy) for dx in offsets for dy in offsets]


def write_study_data(directory: Path) -> dict:
    """Write rasters, vectors and a labelled CSV for one synthetic study."""
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    rows, cols = np.mgrid[0:SIZE, 0:SIZE]

    dem = 800.0 + 6.0 * rows + 40.0 * np.sin(cols / 5.0)
    ndvi = 0.2 + 0.3 * np.cos(rows / 7.0) + 0.01 * cols

    paths = {
        'dem': write_raster(directory / "dem.tif", dem),
        'ndvi': write_raster(directory / "ndvi.tif", ndvi),
        'boundary': directory / "boundary.gpkg",
        'points': directory / "landslides.gpkg",
        'rivers': directory / "rivers.gpkg",
        'lithology': directory / "lithology.gpkg",
        'labelled': directory / "training.csv"
    }

    gpd.GeoDataFrame({'name': ["study"]}, geometry=[boundary_polygon()], crs=CRS).to_file(
        paths['boundary'], driver="GPKG"
    )

    points = inventory_points()
    gpd.GeoDataFrame({'id': list(range(len(points)))}, geometry=points, crs=CRS).to_file(
        paths['points'], driver="GPKG"
    )

    river_x = cell_centre(0, 20)[0]
    river = LineString([(river_x, ORIGIN_Y - 5), (river_x, ORIGIN_Y - SIZE * CELL + 5)])
    gpd.GeoDataFrame({'name': ["river"]}, geometry=[river], crs=CRS).to_file(
        paths['rivers'], driver="GPKG"
    )

    top, bottom = ORIGIN_Y, ORIGIN_Y - SIZE * CELL
    lithology = gpd.GeoDataFrame(
        {'rock': ["granite", "schist"]},
        geometry=[
            box(ORIGIN_X, bottom, ORIGIN_X + 20 * CELL, top),
            box(ORIGIN_X + 20 * CELL, bottom, ORIGIN_X + 36 * CELL, top)
        ],
        crs=CRS
    )
    lithology.to_file(paths['lithology'], driver="GPKG")

    geographic = gpd.GeoSeries(points, crs=CRS).to_crs("EPSG:4326")
    labelled = pd.DataFrame({
        'longitude': geographic.x.values,
        'latitude': geographic.y.values,
        'class': [i % 2 for i in range(len(points))]
    })
    labelled.loc[len(labelled)] = [geographic.x.values[0], geographic.y.values[0], "unknown"]
    labelled.to_csv(paths['labelled'], index=False)

    return paths


def write_study_file(directory: Path, data: dict, **overrides) -> Path:
    """Write a landslide study JSON pointing at ``data``."""
    study = {
        'name': "synthetic",
        'profile': "landslide",
        'boundary': str(data['boundary']),
        'layers': {'dem': str(data['dem']), 'ndvi': str(data['ndvi'])},
        'categorical_layers': {
            'lithology': {'path': str(data['lithology']), 'field': "rock", 'fill_value': -1}
        },
        'derived': {'slope': True, 'distances': {'dfriver': str(data['rivers'])}},
        'sampling': {'strategy': "buffered_random", 'points': str(data['points']), 'buffer_m': 30},
        'model': {'n_estimators': 10, 'n_jobs': 1},
        'output_dir': str(Path(directory) / "outputs"),
        'figures': False
    }
    study.update(overrides)
    path = Path(directory) / "study.json"
    with open(path, 'w') as f:
        json.dump(study, f, indent=2)
    return path


@pytest.fixture
def study_data(tmp_path):
    return write_study_data(tmp_path / "data")


@pytest.fixture
def study_area():
    return StudyArea(boundary_polygon(), CRS)


@pytest.fixture
def small_stack():
    """Two-band 6 x 6 stack; the outer ring is outside the study area."""
    rows, cols = np.mgrid[0:6, 0:6]
    slope = (rows * 6 + cols).astype(np.float32)
    ndvi = (1.0 - cols / 5.0).astype(np.float32)
    study_mask = np.zeros((6, 6), dtype=bool)
    study_mask[1:5, 1:5] = True

    data = np.stack([slope, ndvi])
    data[:, ~study_mask] = np.nan
    return PredictorStack(["slope", "ndvi"], data, grid_transform(), CRS, study_mask)
