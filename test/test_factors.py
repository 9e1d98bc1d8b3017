import math

import numpy as np
import pytest

import config
from basin_rusle.factors import (
    c_factor,
    k_factor,
    ls_factor,
    ndvi,
    p_factor,
    practice_rules,
    r_factor,
    slope_from_elevation,
    slope_percent,
)
from basin_rusle.raster import Raster
from conftest import make_grid


def row(values, name="band"):
    arr = np.array([values], dtype=float)
    return Raster(data=arr, grid=make_grid(shape=arr.shape), name=name)


# ── R ───────────────────────────────────────────────────────────────────────

def test_r_factor_linear_in_precipitation():
    r = r_factor(row([0.0, 100.0, 1000.0]))
    assert r.data[0].tolist() == pytest.approx([79.0, 115.3, 442.0])


def test_r_factor_monotonic_and_keeps_mask():
    r = r_factor(row([10.0, 20.0, np.nan, 30.0]))
    assert r.data[0, 0] < r.data[0, 1] < r.data[0, 3]
    assert np.isnan(r.data[0, 2])


def test_r_factor_logs_range(caplog):
    with caplog.at_level("INFO", logger="basin_rusle.factors"):
        r_factor(row([0.0, 1000.0]))
    assert "[FACTOR] R computed – range [79.00, 442.00]" in caplog.text


# ── K ───────────────────────────────────────────────────────────────────────

@pytest.mark.parametrize("code, expected", sorted(config.K_FACTORS.items()))
def test_k_factor_table(code, expected):
    assert k_factor(row([code])).data[0, 0] == pytest.approx(expected)


@pytest.mark.parametrize("code", [0, 13, 99, 255])
def test_k_factor_unknown_code_is_default(code):
    assert k_factor(row([code])).data[0, 0] == config.K_DEFAULT


def test_k_factor_custom_table_and_mask():
    k = k_factor(row([1, 2, np.nan]), table={1: 0.5}, default=0.1)
    assert k.data[0, :2].tolist() == [0.5, 0.1]
    assert np.isnan(k.data[0, 2])


# ── LS ──────────────────────────────────────────────────────────────────────

def test_ls_flat_terrain_reference():
    ls = ls_factor(row([0.0]), slope_length=500.0)
    assert ls.data[0, 0] == pytest.approx(0.76 * math.sqrt(500.0 / 22.13))


def test_ls_grows_with_slope_and_length():
    short = ls_factor(row([0.0, 5.0, 10.0]), slope_length=100.0)
    long_ = ls_factor(row([0.0, 5.0, 10.0]), slope_length=400.0)
    assert short.data[0, 0] < short.data[0, 1] < short.data[0, 2]
    np.testing.assert_allclose(long_.data, short.data * 2.0)


def test_slope_percent_converts_degrees():
    pct = slope_percent(row([0.0, 45.0]))
    assert pct.data[0].tolist() == pytest.approx([0.0, 100.0])


def test_slope_from_planar_dem():
    # 10 % grade along x on 500 m pixels
    dem = row([0.0, 50.0, 100.0, 150.0])
    slope = slope_from_elevation(dem)
    np.testing.assert_allclose(slope.data, math.degrees(math.atan(0.1)))
    np.testing.assert_allclose(slope_percent(slope).data, 10.0)


def test_slope_flat_dem_is_zero():
    dem = Raster(data=np.full((3, 3), 250.0), grid=make_grid(shape=(3, 3)))
    assert np.all(slope_from_elevation(dem).data == 0.0)


# ── NDVI / C ────────────────────────────────────────────────────────────────

def test_ndvi_values_and_masking():
    nir = row([0.6, 0.0, 0.5, 0.2])
    red = row([0.2, 0.0, 0.0, 0.6])
    out = ndvi(nir, red).data[0]
    assert out[0] == pytest.approx(0.5)
    assert np.isnan(out[1])          # NIR + Red = 0
    assert np.isnan(out[2])          # NDVI = 1
    assert out[3] == pytest.approx(-0.5)


def test_c_observed_spans_unit_interval():
    c = c_factor(row([-0.3, 0.0, 0.2, 0.7, np.nan]), "observed")
    valid = c.data[c.valid]
    assert valid.min() == pytest.approx(0.0)
    assert valid.max() == pytest.approx(1.0)
    assert np.isnan(c.data[0, 4])


def test_c_decreases_with_vegetation():
    c = c_factor(row([-0.3, 0.0, 0.2, 0.7]), "observed").data[0]
    assert np.all(np.diff(c) < 0)


def test_c_theoretical_divides_by_e():
    c = c_factor(row([0.0, -0.999, 0.5]), "theoretical").data[0]
    assert c[0] == pytest.approx(1.0 / math.e)
    assert 0.0 <= c[1] <= 1.0
    assert c[2] == pytest.approx(math.exp(-2.0) / math.e)


def test_c_degenerate_observed_falls_back_to_theoretical():
    c = c_factor(row([0.3, 0.3]), "observed").data[0]
    expected = math.exp(-2 * 0.3 / 0.7) / math.e
    assert c.tolist() == pytest.approx([expected, expected])


def test_c_rejects_unknown_normalization():
    with pytest.raises(ValueError):
        c_factor(row([0.1]), "minmax")


# ── P ───────────────────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "code, slope, expected",
    [
        (12, 0.0, 0.6),
        (12, 1.99, 0.6),
        (12, 2.0, 0.5),
        (14, 7.9, 0.5),
        (14, 8.0, 0.6),
        (12, 12.0, 0.7),
        (12, 16.0, 0.8),
        (14, 24.9, 0.9),
        (14, 25.0, 1.0),
        (12, 60.0, 1.0),
        (1, 3.0, 0.8),
        (10, 40.0, 0.8),
        (13, 3.0, 1.0),
        (17, 0.0, 1.0),
        (0, 3.0, config.P_DEFAULT),
    ],
)
def test_p_factor_rules(code, slope, expected):
    assert p_factor(row([code]), row([slope])).data[0, 0] == pytest.approx(expected)


def test_p_factor_first_match_wins():
    rules = (((12,), 0.0, 10.0, 0.3), ((12,), 0.0, 100.0, 0.9))
    assert p_factor(row([12]), row([5.0]), rules=rules).data[0, 0] == 0.3


def test_p_factor_masked_inputs():
    p = p_factor(row([np.nan, 12]), row([3.0, np.nan]))
    assert np.all(np.isnan(p.data))


def test_practice_rules_from_config():
    rules = practice_rules()
    assert len(rules) == len(config.P_RULES)
    assert rules[0].value == 0.8
