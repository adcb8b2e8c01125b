from .orchestrator import DeployOptions, DeployResult, Orchestrator, StackOutcome  # noqa: F401
from .status_reducer import reduce_run_status  # noqa: F401
