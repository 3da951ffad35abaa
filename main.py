import argparse, datetime, os, time, ray, mlflow

from config import GeneralConfig, SynthesisConfig, MassflowConfig
from logger import Logger

from catalog.tech_file import import_tech_file
from core.massflow_parallel import massflow_summary_parallel
from network.system_builder import build_systems
from network.system_export import save_systems, write_dot_file
from utils import load_input_masses, set_mlflow_connection, stats_table

os.environ["RAY_DEDUP_LOGS"] = "0"


def synthesize(syn_config: SynthesisConfig, techs_path: str, results_path: str):
    sources, additional_sources, techs = import_tech_file(techs_path,
                                                         source_group=syn_config.source_group,
                                                         source_add_group=syn_config.source_add_group,
                                                         sink_group=syn_config.sink_group)
    print(f"Loaded {len(sources)} sources, {len(additional_sources)} additional sources and {len(techs)} technologies.")

    start = time.perf_counter()
    with open(os.path.join(results_path, "systems.txt"), "w") as resultfile, \
            open(os.path.join(results_path, "dead_ends.txt"), "w") as errorfile:
        systems = build_systems(sources, techs, additional_sources,
                                resultfile=resultfile, errorfile=errorfile,
                                deduplicate=syn_config.deduplicate)
    print(f"Found {len(systems)} systems in {time.perf_counter() - start:.2f}s.")
    return systems


if __name__ == '__main__':
    print(">> Sanitation system builder")

    parser = argparse.ArgumentParser(description='Build all sanitation systems and compute their mass flows')
    parser.add_argument('--techs', required=True, help="Path to the technology library (JSON)")
    parser.add_argument('--input-masses', help="JSON file {source name: {substance: mass}}. Without it only systems are built")
    parser.add_argument('--n', type=int, help="Number of mass-flow runs per system")
    parser.add_argument('--seed', type=int, help="Seed for the Monte Carlo streams")
    parser.add_argument('--workers', type=int, help="Number of parallel workers")
    parser.add_argument('--results-path', help="Directory for results")
    parser.add_argument('--deterministic', action='store_true', help="Use nominal transfer coefficients")
    parser.add_argument('--deduplicate', action='store_true', help="Drop systems with identical structure")
    parser.add_argument('--dot', action='store_true', help="Write a GraphViz file per system")
    args = parser.parse_args()

    gen_config = GeneralConfig()
    syn_config = SynthesisConfig()
    mf_config = MassflowConfig()

    if args.results_path is not None:
        gen_config.results_path = args.results_path
    if args.seed is not None:
        gen_config.seed = args.seed
    if args.workers is not None:
        gen_config.num_workers = args.workers
    if args.n is not None:
        mf_config.n_runs = args.n
    if args.deterministic:
        mf_config.montecarlo = False
    syn_config.deduplicate = syn_config.deduplicate or args.deduplicate
    gen_config.write_dot_files = gen_config.write_dot_files or args.dot

    logger = Logger(args, gen_config.results_path, gen_config.log_to_file)

    # set up mlflow connection
    set_mlflow_connection(gen_config.mlflow_tracking_uri, gen_config.results_path)
    run_start_time = datetime.datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    if gen_config.mlflow_experiment is None:
        mlflow.set_experiment('sanitation' + '_' + run_start_time)
    else:
        mlflow.set_experiment(gen_config.mlflow_experiment)

    with mlflow.start_run(run_name=run_start_time):
        logger.log_hyperparams(gen_config, syn_config, mf_config)

        systems = synthesize(syn_config, args.techs, gen_config.results_path)
        logger.log_metrics({"n_systems": len(systems)}, step=0, step_desc="synthesis")

        if args.input_masses is not None and systems:
            input_masses = load_input_masses(args.input_masses)

            ray.init(num_cpus=gen_config.ray_num_cpus, log_to_driver=False, include_dashboard=False)
            print(ray.available_resources())

            failures = massflow_summary_parallel(systems, input_masses, n=mf_config.n_runs,
                                                 montecarlo=mf_config.montecarlo, seed=gen_config.seed,
                                                 config=mf_config, gen_config=gen_config)
            logger.log_metrics({"n_failed": len(failures)}, step=0, step_desc="massflow")
            if failures:
                print(f"WARNING! Mass flows failed for {len(failures)} systems, see log.")

            logger.text_artifact(os.path.join(gen_config.results_path, "massflow_stats.txt"), stats_table(systems))

            print("Finished. Shutting down ray.")
            ray.shutdown()

        save_systems(systems, os.path.join(gen_config.results_path, "systems.pickle"))

        if gen_config.write_dot_files:
            dot_dir = os.path.join(gen_config.results_path, "dot")
            os.makedirs(dot_dir, exist_ok=True)
            for s in systems:
                write_dot_file(s, os.path.join(dot_dir, f"{s.properties['ID']}.dot"))

    print(f"Results written to {gen_config.results_path}")
