import os

import pytest
import ray

from catalog.technology import make_tech

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
DATA = os.path.join(ROOT, "tests", "data")


@pytest.fixture(scope="session")
def ray_local():
    # workers import the project modules by top-level name
    ray.init(num_cpus=2, include_dashboard=False, log_to_driver=False, ignore_reinit_error=True,
             runtime_env={"env_vars": {"PYTHONPATH": ROOT}})
    yield
    ray.shutdown()


@pytest.fixture
def toilet():
    return make_tech([], ["blackwater"], "Pour flush toilet", "U")


@pytest.fixture
def pool():
    """Small library: septic tank followed by effluent and sludge treatment options."""
    return [
        make_tech(["blackwater"], ["effluent", "sludge"], "Septic tank", "S",
                  transfer={"water": {"effluent": 0.9, "water loss": 0.02},
                            "nitrogen": {"effluent": 0.6, "air loss": 0.2},
                            "phosphor": {"effluent": 0.3}}),
        make_tech(["effluent"], [], "Soak pit", "D",
                  transfer={"water": {"soil loss": 0.9}, "nitrogen": {"soil loss": 0.5}}),
        make_tech(["effluent"], [], "Leach field", "D",
                  transfer={"water": {"soil loss": 0.7}}),
        make_tech(["sludge"], ["transported sludge"], "Motorized emptying", "C",
                  transfer={"totalsolids": {"spill loss": 0.05}}),
        make_tech(["transported sludge"], ["dried sludge"], "Drying bed", "T",
                  transfer={"water": {"air loss": 0.8}, "nitrogen": {"air loss": 0.3}}),
        make_tech(["dried sludge"], [], "Land application", "D"),
    ]


@pytest.fixture
def input_masses():
    return {"Pour flush toilet": {"phosphor": 0.5, "nitrogen": 4.5, "water": 1500.0, "totalsolids": 40.0}}


@pytest.fixture
def tech_file():
    return os.path.join(DATA, "example_techs.json")
