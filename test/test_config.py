import pytest

import config
from config import RunConfig


def test_defaults_are_valid():
    cfg = RunConfig().validate()
    assert cfg.breakpoints == config.EROSION_BREAKPOINTS
    assert len(cfg.class_labels) == len(cfg.breakpoints) + 1


@pytest.mark.parametrize(
    "options",
    [
        dict(start_date="2022-06-01", end_date="2022-06-01"),
        dict(start_date="2023-01-01", end_date="2022-01-01"),
        dict(start_date="yesterday"),
        dict(slope_length=0),
        dict(breakpoints=()),
        dict(breakpoints=(5, 5, 20, 40)),
        dict(breakpoints=(10, 5, 20, 40)),
        dict(breakpoints=(-1, 5, 20, 40)),
        dict(breakpoints=(5, 10)),
        dict(c_normalization="minmax"),
        dict(on_ambiguous_basin="last"),
        dict(max_cloud_pct=120),
        dict(max_workers=0),
    ],
)
def test_invalid_options(options):
    with pytest.raises(ValueError):
        RunConfig(**options).validate()


def test_custom_class_scheme():
    cfg = RunConfig(
        breakpoints=(1.0, 2.0),
        class_labels=("low", "mid", "high"),
        class_colors=("#000000", "#777777", "#ffffff"),
    ).validate()
    assert cfg.as_params()["breakpoints"] == [1.0, 2.0]


def test_params_are_json_friendly():
    params = RunConfig(basin_id=7).as_params()
    assert params["basin_id"] == 7
    assert params["start_date"] == config.DEFAULT_START_DATE
    assert isinstance(params["class_labels"], list)
