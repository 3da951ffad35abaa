import os, datetime


class GeneralConfig:

    """
    General configuration for running the pipeline: seeding, parallel workers and results.

    """

    def __init__(self):
        self.seed = None  # None -> fresh OS entropy for every run. Set an int for reproducible Monte Carlo streams.

        # Parallel mass-flow summaries (ray)
        self.num_workers = 4  # Number of worker tasks pulling systems from the job pool
        self.batch_size_per_worker = 4  # Systems a worker takes from the pool at once
        self.ray_num_cpus = None  # Passed to ray.init if ray is not yet running. None -> all cores

        # Results and logging
        self.results_path = os.path.join("./results",
                                         datetime.datetime.now().strftime(
                                             "%Y-%m-%d--%H-%M-%S"))  # Path to store systems, statistics and logs
        self.log_to_file = True
        self.mlflow_experiment = None  # None -> 'sanitation_<timestamp>'
        self.mlflow_tracking_uri = None  # e.g. "http://0.0.0.0:5000". None -> local file store in results_path/mlruns
        self.write_dot_files = False  # Write one GraphViz file per system into results_path/dot


class SynthesisConfig:

    """
    Technology library and network search settings.
    """

    def __init__(self):
        # group tags used to split a technology library into sources and pool
        self.source_group = "U"  # user interfaces (toilets), one search per source
        self.source_add_group = "Uadd"  # additional sources joining every search in stage 0
        self.sink_group = "D"  # disposal / reuse

        # drop systems that only differ in the order technologies were added
        self.deduplicate = False


class MassflowConfig:

    """
    Mass-flow simulation and Monte Carlo settings.
    """

    def __init__(self):
        # substances to track, e.g. ("phosphor", "nitrogen", "water", "totalsolids").
        # None -> every substance named in the input masses
        self.tracked_substances = None

        # ----- Monte Carlo -----
        self.n_runs = 100  # number of massflow runs reduced into one summary
        self.montecarlo = True  # sample transfer coefficients; False -> nominal coefficients
        self.reliability_scale = 1.0  # >1 tightens the Dirichlet draws around the nominal coefficients

        # statistics reported next to mean and sd
        self.quantiles = (0.05, 0.25, 0.5, 0.75, 0.95)

        # ----- Mass-balance tolerances -----
        self.mb_rtol = 1e-12  # relative to entered mass
        self.mb_atol = 1e-9  # absolute tolerance
