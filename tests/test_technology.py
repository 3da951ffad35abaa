import numpy as np
import pytest

from catalog.technology import RECOVERED, Product, Tech, make_tech


def test_product_identity_by_name():
    assert Product("urine") == Product("urine")
    assert len({Product("urine"), Product("urine"), Product("feces")}) == 2
    with pytest.raises(ValueError):
        Product("")


def test_tech_identity_ignores_transfer_data():
    a = make_tech(["x"], ["y"], "Tank", "S", transfer={"water": {"y": 0.5}})
    b = make_tech(["x"], ["y"], "Tank", "S", reliability=3.0)
    assert a == b
    assert hash(a) == hash(b)
    assert a != make_tech(["x"], ["y"], "Tank", "T")


def test_source_and_sink_classification():
    source = make_tech([], ["x"], "A", "U")
    sink = make_tech(["x"], [], "B", "D")
    assert source.is_source and not source.is_sink
    assert sink.is_sink and not sink.is_source
    assert sink.n_inputs == 1


@pytest.mark.parametrize("transfer", [
    {"water": {"air loss": 1.5}},
    {"water": {"air loss": -0.1}},
    {"water": {"air loss": 0.6, "soil loss": 0.6}},
    {"water": {RECOVERED: 0.5}},
])
def test_invalid_transfer_rejected(transfer):
    with pytest.raises(ValueError):
        make_tech(["x"], ["y"], "Tank", "S", transfer=transfer)


def test_nonpositive_reliability_rejected():
    with pytest.raises(ValueError):
        make_tech(["x"], ["y"], "Tank", "S", reliability=0.0)


def test_remainder_goes_to_free_outputs():
    tech = make_tech(["x"], ["a", "b", "c"], "Splitter", "S",
                     transfer={"water": {"a": 0.5, "air loss": 0.1}})
    coeffs = tech.transfer_coefficients("water")
    assert coeffs["a"] == pytest.approx(0.5)
    assert coeffs["b"] == pytest.approx(0.2)
    assert coeffs["c"] == pytest.approx(0.2)
    assert coeffs["air loss"] == pytest.approx(0.1)
    assert sum(coeffs.values()) == pytest.approx(1.0)


def test_untracked_substance_splits_evenly():
    tech = make_tech(["x"], ["a", "b"], "Splitter", "S")
    assert tech.transfer_coefficients("nitrogen") == {"a": 0.5, "b": 0.5}


def test_sink_keeps_remainder_as_recovered():
    sink = make_tech(["x"], [], "Pit", "D", transfer={"water": {"soil loss": 0.3}})
    coeffs = sink.transfer_coefficients("water")
    assert coeffs[RECOVERED] == pytest.approx(0.7)
    assert coeffs["soil loss"] == pytest.approx(0.3)
    assert sink.loss_pathways() == ["soil loss"]


def test_sampled_coefficients_sum_to_one():
    tech = make_tech(["x"], ["a", "b"], "Tank", "S",
                     transfer={"water": {"a": 0.6, "air loss": 0.1}}, reliability=5.0)
    rng = np.random.default_rng(3)
    for _ in range(20):
        draw = tech.sample_transfer_coefficients("water", rng)
        assert set(draw) == set(tech.transfer_coefficients("water"))
        assert sum(draw.values()) == pytest.approx(1.0, abs=1e-12)
        assert all(v >= 0.0 for v in draw.values())


def test_reliability_scale_tightens_draws():
    tech = make_tech(["x"], ["a", "b"], "Tank", "S", transfer={"water": {"a": 0.6}})
    rng = np.random.default_rng(7)
    loose = [tech.sample_transfer_coefficients("water", rng)["a"] for _ in range(300)]
    tight = [tech.sample_transfer_coefficients("water", rng, reliability_scale=100.0)["a"] for _ in range(300)]
    assert np.std(tight) < np.std(loose)
    assert np.mean(tight) == pytest.approx(0.6, abs=0.01)


def test_single_target_is_not_sampled():
    tech = make_tech(["x"], ["a"], "Pipe", "C")
    draw = tech.sample_transfer_coefficients("water", np.random.default_rng(0))
    assert draw == {"a": 1.0}


def test_str_lists_products():
    assert str(make_tech([], ["x"], "A", "U")) == "A: (Source) -> (x)"
    assert isinstance(make_tech(["x"], [], "B", "D"), Tech)
