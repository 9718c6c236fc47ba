import numpy as np
import pytest
from rasterio.transform import from_origin

from susceptibility.config import CLASSIFICATION_SCHEMES
from susceptibility.zonation import (
    area_statistics, classify_probability, format_area_table, mask_area_sqkm,
    pixel_area, validate_thresholds
)

from conftest import CRS


THREE = CLASSIFICATION_SCHEMES['three_class']
FIVE = CLASSIFICATION_SCHEMES['five_class']


class TestClassifyProbability:
    def test_three_class_boundaries(self):
        probability = np.array([0.0, 0.33, 0.34, 0.66, 0.67, 1.0, np.nan])
        classes = classify_probability(probability, THREE['thresholds'])
        assert classes.tolist() == [1, 1, 2, 2, 3, 3, 0]
        assert classes.dtype == np.uint8

    def test_five_class_boundaries(self):
        probability = np.array([0.1, 0.2, 0.21, 0.4, 0.5, 0.8, 0.81])
        classes = classify_probability(probability, FIVE['thresholds'])
        assert classes.tolist() == [1, 1, 2, 2, 3, 4, 5]

    def test_keeps_raster_shape(self):
        probability = np.array([[0.1, np.nan], [0.5, 0.9]])
        classes = classify_probability(probability, THREE['thresholds'])
        assert classes.tolist() == [[1, 0], [2, 3]]

    @pytest.mark.parametrize("thresholds", [[], [0.6, 0.3], [0.0, 0.5], [0.5, 1.0], [0.4, 0.4]])
    def test_invalid_thresholds(self, thresholds):
        with pytest.raises(ValueError):
            validate_thresholds(thresholds)


class TestPixelArea:
    def test_projected_cells_are_constant(self):
        areas = pixel_area(from_origin(0, 0, 30, 30), CRS, (3, 4))
        assert areas.shape == (3, 4)
        assert np.all(areas == 900.0)

    def test_geographic_cells_shrink_towards_the_pole(self):
        equator = pixel_area(from_origin(10, 1, 1, 1), "EPSG:4326", (1, 2))
        north = pixel_area(from_origin(10, 61, 1, 1), "EPSG:4326", (1, 2))

        # One degree square at the equator is about 12,309 sq km
        assert equator[0, 0] / 1e6 == pytest.approx(12309, rel=2e-3)
        assert equator[0, 0] == equator[0, 1]
        assert 0.45 < north[0, 0] / equator[0, 0] < 0.52

    def test_mask_area(self):
        mask = np.array([[True, False], [True, True]])
        assert mask_area_sqkm(mask, from_origin(0, 0, 100, 100), CRS) == pytest.approx(0.03)


class TestAreaStatistics:
    def test_areas_and_percentages(self):
        classes = np.array([[1, 1, 2, 3],
                            [1, 2, 2, 3],
                            [0, 0, 0, 0]], dtype=np.uint8)
        study_mask = np.ones(classes.shape, dtype=bool)
        study_mask[2, :2] = False

        stats = area_statistics(classes, study_mask, from_origin(0, 0, 100, 100), CRS,
                                THREE['class_names'])

        assert stats['ClassName'].tolist() == ["Low", "Medium", "High"]
        assert stats['Area_sqkm'].tolist() == pytest.approx([0.03, 0.03, 0.02])
        assert stats.attrs['total_area_sqkm'] == pytest.approx(0.10)
        # Unclassified study cells leave the sum below 100 %
        assert stats['Percentage'].sum() == pytest.approx(80.0)

    def test_empty_study_area_gives_zero_percentages(self):
        classes = np.zeros((2, 2), dtype=np.uint8)
        stats = area_statistics(classes, np.zeros((2, 2), dtype=bool), from_origin(0, 0, 30, 30), CRS,
                                THREE['class_names'])
        assert stats['Percentage'].tolist() == [0.0, 0.0, 0.0]

    def test_format_area_table(self):
        classes = np.array([[1, 2], [3, 3]], dtype=np.uint8)
        stats = area_statistics(classes, np.ones((2, 2), dtype=bool), from_origin(0, 0, 1000, 1000), CRS,
                                THREE['class_names'])
        table = format_area_table(stats)
        lines = table.splitlines()

        assert lines[0].startswith("+")
        assert "Medium" in table
        assert "| Total" in lines[-2]
        assert "4.00" in lines[-2]
        assert "100.00%" in lines[-2]
