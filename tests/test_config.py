import json

import pytest

from susceptibility.config import (
    CLASSIFICATION_SCHEMES, FAVORABILITY, MODEL_CONFIG, PROFILES, build_study_config,
    load_study_config
)


def minimal_study(**overrides):
    study = {
        'name': "karnal",
        'profile': "groundwater",
        'boundary': "boundary.shp",
        'layers': {'dem': "rasters/dem.tif"},
        'sampling': {'strategy': "favorability"}
    }
    study.update(overrides)
    return study


class TestDefaults:
    def test_model_defaults(self):
        params = MODEL_CONFIG['params']
        assert (params['n_estimators'], params['max_samples'], params['min_samples_leaf']) == (500, 0.7, 2)

    def test_favorability_weights(self):
        assert sum(FAVORABILITY['weights'].values()) == pytest.approx(1.0)
        assert FAVORABILITY['invert'] == ["slope"]

    def test_schemes_match_class_names(self):
        for scheme in CLASSIFICATION_SCHEMES.values():
            assert len(scheme['class_names']) == len(scheme['thresholds']) + 1
            assert len(scheme['colors']) == len(scheme['class_names'])

    def test_profiles(self):
        assert PROFILES['landslide']['buffer_m'] == 100
        assert PROFILES['groundwater']['scheme'] == "five_class"


class TestBuildStudyConfig:
    def test_resolves_paths_and_fills_defaults(self, tmp_path):
        config = build_study_config(minimal_study(), base_dir=tmp_path)

        assert config['profile_name'] == "groundwater"
        assert config['scheme_name'] == "five_class"
        assert config['boundary'] == (tmp_path / "boundary.shp").resolve()
        assert config['layers']['dem'] == (tmp_path / "rasters" / "dem.tif").resolve()
        assert config['sampling']['buffer_m'] == 500
        assert config['favorability']['points_per_class'] == 300
        assert config['model']['n_estimators'] == 500
        assert config['n_thresholds'] == 50
        assert config['output_dir'].name == "karnal"

    def test_overrides(self, tmp_path):
        config = build_study_config(minimal_study(
            scheme="three_class",
            model={'n_estimators': 50},
            favorability={'points_per_class': 40},
            categorical_layers={'soil': {'path': "soil.shp", 'field': "TYPE"}},
            output_dir="out"
        ), base_dir=tmp_path)

        assert config['scheme']['thresholds'] == [0.33, 0.66]
        assert config['model']['n_estimators'] == 50
        assert config['model']['max_samples'] == 0.7
        assert config['favorability']['points_per_class'] == 40
        assert config['favorability']['weights'] == FAVORABILITY['weights']
        assert config['categorical_layers']['soil'] == {
            'path': (tmp_path / "soil.shp").resolve(), 'field': "TYPE", 'fill_value': None
        }
        assert config['output_dir'] == (tmp_path / "out").resolve()

    def test_sampling_scale_sets_resolution(self, tmp_path):
        assert build_study_config(minimal_study(), base_dir=tmp_path)['resolution'] is None

        scaled = build_study_config(
            minimal_study(sampling={'strategy': "favorability", 'scale': 90}), base_dir=tmp_path
        )
        assert scaled['resolution'] == 90

        explicit = build_study_config(
            minimal_study(resolution=30, sampling={'strategy': "favorability", 'scale': 90}),
            base_dir=tmp_path
        )
        assert explicit['resolution'] == 30

    def test_export_splits_flag(self, tmp_path):
        assert build_study_config(minimal_study(), base_dir=tmp_path)['export_splits'] is False
        assert build_study_config(minimal_study(export_splits=True), base_dir=tmp_path)['export_splits'] is True

    def test_profile_defaults_are_copied(self, tmp_path):
        config = build_study_config(minimal_study(), base_dir=tmp_path)
        config['scheme']['thresholds'].append(0.9)
        assert CLASSIFICATION_SCHEMES['five_class']['thresholds'] == [0.2, 0.4, 0.6, 0.8]

    @pytest.mark.parametrize("overrides, message", [
        ({'profile': "flood"}, "Unknown profile"),
        ({'scheme': "seven_class"}, "Unknown classification scheme"),
        ({'sampling': {'strategy': "grid"}}, "Unknown sampling strategy"),
        ({'sampling': {'strategy': "buffered_random"}}, "needs a 'points' file"),
        ({'categorical_layers': {'soil': {'path': "soil.shp"}}}, "needs 'path' and 'field'"),
    ])
    def test_invalid_study(self, tmp_path, overrides, message):
        with pytest.raises(ValueError, match=message):
            build_study_config(minimal_study(**overrides), base_dir=tmp_path)

    def test_missing_key(self, tmp_path):
        study = minimal_study()
        del study['layers']
        with pytest.raises(ValueError, match="missing 'layers'"):
            build_study_config(study, base_dir=tmp_path)


def test_load_study_config_resolves_against_file(tmp_path):
    path = tmp_path / "studies" / "karnal.json"
    path.parent.mkdir()
    path.write_text(json.dumps(minimal_study()))

    config = load_study_config(path)
    assert config['boundary'] == (tmp_path / "studies" / "boundary.shp").resolve()


def test_load_missing_study_config(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_study_config(tmp_path / "missing.json")
