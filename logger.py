import logging, os, sys, mlflow


class Logger:

    """
    Run logger for the results directory.

    Sets up the root `logging` handlers (console, and `log.txt` in `results_path` if
    `log_to_file`). Hyperparameters, metrics and text artifacts go to the active mlflow run.
    """

    def __init__(self, args, results_path: str, log_to_file: bool, level: int = logging.INFO):
        self.results_path = results_path
        self.log_to_file = log_to_file
        os.makedirs(results_path, exist_ok=True)

        handlers = [logging.StreamHandler(sys.stdout)]
        if log_to_file:
            handlers.append(logging.FileHandler(os.path.join(results_path, "log.txt")))
        logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s",
                            handlers=handlers, force=True)
        self.logger = logging.getLogger("sanitation")

        if args is not None:
            self.logger.info("Arguments: %s", vars(args))

    def log_hyperparams(self, *configs):
        params = {}
        for config in configs:
            params.update({f"{type(config).__name__}.{k}": v for k, v in vars(config).items()
                           if isinstance(v, (int, float, str, bool, tuple, type(None)))})
        for k, v in params.items():
            self.logger.info("%s = %s", k, v)
        mlflow.log_params(params)

    def log_metrics(self, metrics: dict, step: int = 0, step_desc: str = "step"):
        for k, v in metrics.items():
            self.logger.info("[%s %d] %s: %s", step_desc, step, k, v)
            mlflow.log_metric(k, v, step=step)

    def text_artifact(self, path: str, text: str):
        with open(path, "w") as f:
            f.write(text)
        if mlflow.active_run() is not None:
            mlflow.log_text(text, os.path.basename(path))
