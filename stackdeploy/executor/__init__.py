from .runner import SubprocessRunner  # noqa: F401
from .terraform import PlanOutcome, TerraformExecutor  # noqa: F401
