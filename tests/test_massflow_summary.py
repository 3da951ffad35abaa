import numpy as np
import pytest

from catalog.technology import make_tech
from config import MassflowConfig
from core.errors import MassflowNotComputedError
from core.massflow_result import CATEGORIES
from core.massflow_summary import (STATS_KEY, massflow_summary, massflow_summary_inplace, scale_massflows,
                                   scale_massflows_inplace)
from network.system_builder import build_all_systems


@pytest.fixture
def system(toilet, pool):
    return build_all_systems(toilet, pool, deduplicate=True)[0]


def test_five_categories(system, input_masses):
    result = massflow_summary(system, input_masses, n=10)

    assert set(result.keys()) == set(CATEGORIES)
    assert len(result) == 5
    n_subs, n_pw, n_stats = len(result.substances), len(result.pathways), len(result.statistics)
    assert result["entered"].shape == (n_subs, n_stats)
    assert result["lost_ratio"].shape == (n_subs, n_pw, n_stats)
    assert result.statistics == ("mean", "sd", "q_0.05", "q_0.25", "q_0.5", "q_0.75", "q_0.95")
    assert STATS_KEY not in system.properties


def test_deterministic_summary_has_no_spread(system, input_masses):
    result = massflow_summary(system, input_masses, n=5, montecarlo=False)
    sd = result.statistics.index("sd")
    assert np.all(result["recovered"][:, sd] == 0.0)
    assert result.value("entered", "water") == pytest.approx(1500.0)


def test_single_run_is_valid(system, input_masses):
    result = massflow_summary(system, input_masses, n=1)
    assert result.n == 1
    assert np.all(result["entered"][:, 1] == 0.0)
    with pytest.raises(ValueError):
        massflow_summary(system, input_masses, n=0)


def test_ratios_and_conservation_of_means(system, input_masses):
    result = massflow_summary(system, input_masses, n=50, rng=np.random.default_rng(5))
    mean = 0
    entered = result["entered"][:, mean]
    recovered = result["recovered"][:, mean]
    lost = result["lost"][:, :, mean].sum(axis=1)
    np.testing.assert_allclose(entered - recovered - lost, 0.0, atol=1e-9)
    for sub in result.substances:
        total = result.value("recovery_ratio", sub) + result.value("lost_ratio", sub)
        assert total == pytest.approx(1.0)


def test_zero_input_gives_zero_ratios(system):
    result = massflow_summary(system, {"Pour flush toilet": {"water": 0.0}}, n=3)
    assert result.value("recovery_ratio", "water") == 0.0
    assert result.value("lost_ratio", "water") == 0.0


def test_inplace_summary_is_fresh(system, input_masses):
    first = massflow_summary_inplace(system, input_masses, n=20)
    second = massflow_summary_inplace(system, input_masses, n=20)
    assert system.properties[STATS_KEY] is second
    assert first != second


def test_same_generator_seed_is_reproducible(system, input_masses):
    a = massflow_summary(system, input_masses, n=20, rng=np.random.default_rng(42))
    b = massflow_summary(system, input_masses, n=20, rng=np.random.default_rng(42))
    assert a == b
    assert a.fingerprint() == b.fingerprint()


@pytest.mark.parametrize("factor", [2.5, -1.0, 1e6])
def test_scaling_multiplies_every_statistic(system, input_masses, factor):
    massflow_summary_inplace(system, input_masses, n=20)
    before = system.properties[STATS_KEY].copy()

    scale_massflows_inplace(system, factor)

    after = system.properties[STATS_KEY]
    for k in CATEGORIES:
        assert np.array_equal(after[k], before[k] * factor)
    assert np.array_equal(after.recovered_by, before.recovered_by * factor)
    assert np.array_equal(after.lost_by_tech, before.lost_by_tech * factor)
    entered = after["entered"][:, 0]
    lost = after["lost"][:, :, 0].sum(axis=1)
    np.testing.assert_allclose(entered - after["recovered"][:, 0] - lost, 0.0, atol=1e-9 * abs(factor) + 1e-9)


def test_scaling_by_zero(system, input_masses):
    massflow_summary_inplace(system, input_masses, n=5)
    scale_massflows_inplace(system, 0.0)
    for k in CATEGORIES:
        assert not np.any(system.properties[STATS_KEY][k])


def test_scaled_copy_leaves_original(system, input_masses):
    massflow_summary_inplace(system, input_masses, n=5, keep_samples=True)
    original = system.properties[STATS_KEY].copy()

    scaled = scale_massflows(system, 10.0)

    assert scaled is not system
    assert system.properties[STATS_KEY] == original
    np.testing.assert_allclose(scaled.properties[STATS_KEY]["recovered"], original["recovered"] * 10.0)
    np.testing.assert_allclose(scaled.properties[STATS_KEY].samples["entered"], original.samples["entered"] * 10.0)


def test_scaling_requires_summary(system):
    with pytest.raises(MassflowNotComputedError):
        scale_massflows_inplace(system, 2.0)
    with pytest.raises(MassflowNotComputedError):
        scale_massflows(system, 2.0)


def test_config_defaults_are_used(system, input_masses):
    config = MassflowConfig()
    config.n_runs = 3
    config.montecarlo = False
    config.quantiles = (0.5,)

    result = massflow_summary(system, input_masses, config=config)

    assert result.n == 3
    assert not result.montecarlo
    assert result.statistics == ("mean", "sd", "q_0.5")


def test_records_cover_every_cell(system, input_masses):
    result = massflow_summary(system, input_masses, n=2)
    rows = result.to_records()
    n_cells = (sum(arr.size for arr in result.stats.values())
               + result.recovered_by.size + result.lost_by_tech.size)
    assert len(rows) == n_cells
    assert {r["category"] for r in rows} == set(CATEGORIES) | {"recovered_by", "lost_by_tech"}


def test_breakdowns_survive_summary_and_scaling():
    a = make_tech([], ["x", "y"], "A", "U")
    b = make_tech(["x"], [], "B", "D", transfer={"water": {"soil loss": 0.2}})
    (s,) = build_all_systems(a, [b])

    result = massflow_summary_inplace(s, {"A": {"water": 100.0}}, n=4, montecarlo=False)

    assert len(result) == 5
    assert set(result.destinations) == {"B", "y"}
    assert result.recovered_at("B", "water") == pytest.approx(40.0)
    assert result.recovered_at("y", "water") == pytest.approx(50.0)
    assert result.loss_sources == (("B", "soil loss"),)
    assert result.lost_at("B", "soil loss", "water") == pytest.approx(10.0)
    mean = result.statistics.index("mean")
    assert result.recovered_by[:, :, mean].sum() == pytest.approx(result.value("recovered", "water"))

    before = result.fingerprint()
    scale_massflows_inplace(s, 3.0)

    assert result.recovered_at("y", "water") == pytest.approx(150.0)
    assert result.lost_at("B", "soil loss", "water") == pytest.approx(30.0)
    assert result.fingerprint() != before
    destinations = {r["destination"] for r in result.to_records() if r["category"] == "recovered_by"}
    assert destinations == {"B", "y"}
