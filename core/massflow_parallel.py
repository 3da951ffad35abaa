import logging, os, traceback, ray
import numpy as np
from tqdm import tqdm
from typing import Any, Dict, List, Mapping, Optional, Tuple

from config import GeneralConfig, MassflowConfig
from core.massflow_summary import STATS_KEY, massflow_summary
from network.system import System
from utils import spawn_seed_sequences

os.environ.setdefault("RAY_DEDUP_LOGS", "0")

logger = logging.getLogger(__name__)


@ray.remote
class JobPool:
    def __init__(self, jobs: List[Tuple[int, System, np.random.SeedSequence]]):
        self.jobs = list(jobs)
        self.job_results = []

    def get_jobs(self, n_items: int):
        if len(self.jobs) > 0:
            items = self.jobs[:n_items]
            self.jobs = self.jobs[n_items:]
            return items
        else:
            return None

    def push_results(self, results: List[Tuple[int, Any, Optional[str]]]):
        self.job_results.extend(results)

    def fetch_results(self):
        results = self.job_results
        self.job_results = []
        return results


class MassflowSummaryRunner:

    """
    Computes mass-flow summaries for many systems with ray workers.

    Each system is a job carrying its own seed sequence, so every system draws from an
    independent random stream no matter which worker picks it up.
    """

    def __init__(self, gen_config: Optional[GeneralConfig] = None, massflow_config: Optional[MassflowConfig] = None):
        self.gen_config = gen_config or GeneralConfig()
        self.massflow_config = massflow_config or MassflowConfig()

    def run(self, systems: List[System], input_masses: Mapping[str, Mapping[str, float]], n: Optional[int] = None,
            montecarlo: Optional[bool] = None, reliability_scale: Optional[float] = None,
            seed: Optional[int] = None, num_workers: Optional[int] = None) -> Dict[int, str]:
        """
        Attach a summary to every system in place.

        Returns {index: error message} for the systems that failed; their stale statistics
        are removed and the message is stored in properties["massflow_error"].
        """
        if not systems:
            return {}

        cfg = self.massflow_config
        n = cfg.n_runs if n is None else n
        montecarlo = cfg.montecarlo if montecarlo is None else montecarlo
        reliability_scale = cfg.reliability_scale if reliability_scale is None else reliability_scale
        seed = self.gen_config.seed if seed is None else seed
        num_workers = self.gen_config.num_workers if num_workers is None else num_workers
        num_workers = max(1, min(num_workers, len(systems)))

        if not ray.is_initialized():
            ray.init(num_cpus=self.gen_config.ray_num_cpus, log_to_driver=False,
                     include_dashboard=False, ignore_reinit_error=True)

        seeds = spawn_seed_sequences(seed, len(systems))
        job_pool = JobPool.remote([(i, s, seeds[i]) for i, s in enumerate(systems)])
        results: List[Optional[Tuple[Any, Optional[str]]]] = [None] * len(systems)

        # Kick off workers
        future_tasks = [
            async_massflow_worker.remote(job_pool, input_masses, n, montecarlo, reliability_scale,
                                         cfg, self.gen_config.batch_size_per_worker)
            for _ in range(num_workers)
        ]

        with tqdm(total=len(systems), desc="massflow summaries") as progress_bar:
            while True:
                # Check if all workers are done. If so, break after this iteration
                do_break = len(ray.wait(future_tasks, num_returns=len(future_tasks), timeout=0.5)[1]) == 0
                fetched_results = ray.get(job_pool.fetch_results.remote())
                for (i, result, error) in fetched_results:
                    results[i] = (result, error)
                if len(fetched_results):
                    progress_bar.update(len(fetched_results))
                if do_break:
                    break

        ray.get(future_tasks)
        del job_pool

        return self.process_results(systems, results)

    def process_results(self, systems: List[System], results) -> Dict[int, str]:
        failures: Dict[int, str] = {}
        for i, system in enumerate(systems):
            result, error = results[i] if results[i] is not None else (None, "no result returned by worker")
            if error is None:
                system.properties[STATS_KEY] = result
                system.properties.pop("massflow_error", None)
            else:
                system.properties.pop(STATS_KEY, None)
                system.properties["massflow_error"] = error
                failures[i] = error
                logger.error("Mass-flow summary failed for system %s: %s", system.properties.get("ID", i), error)

        logger.info("Computed mass-flow summaries for %d of %d systems.", len(systems) - len(failures), len(systems))
        return failures


@ray.remote(max_calls=1)
def async_massflow_worker(job_pool: JobPool, input_masses: Mapping[str, Mapping[str, float]], n: int,
                          montecarlo: bool, reliability_scale: float, massflow_config: MassflowConfig,
                          batch_size: int):
    while True:
        batch = ray.get(job_pool.get_jobs.remote(batch_size))

        if batch is None:
            break

        results_to_push = []
        for idx, system, seed_seq in batch:
            rng = np.random.default_rng(seed_seq)
            try:
                result = massflow_summary(system, input_masses, n=n, montecarlo=montecarlo,
                                          reliability_scale=reliability_scale, rng=rng, config=massflow_config)
                results_to_push.append((idx, result, None))
            except Exception as e:
                results_to_push.append((idx, None, f"{type(e).__name__}: {e}\n{traceback.format_exc()}"))

        ray.get(job_pool.push_results.remote(results_to_push))


def massflow_summary_parallel(systems: List[System], input_masses: Mapping[str, Mapping[str, float]],
                              n: Optional[int] = None, montecarlo: Optional[bool] = None,
                              reliability_scale: Optional[float] = None, seed: Optional[int] = None,
                              num_workers: Optional[int] = None, config: Optional[MassflowConfig] = None,
                              gen_config: Optional[GeneralConfig] = None) -> Dict[int, str]:
    """Parallel `massflow_summary_inplace` over many systems. Returns failures by index."""
    runner = MassflowSummaryRunner(gen_config, config)
    return runner.run(systems, input_masses, n=n, montecarlo=montecarlo, reliability_scale=reliability_scale,
                      seed=seed, num_workers=num_workers)
