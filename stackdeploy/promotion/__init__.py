from .health import wait_until_healthy  # noqa: F401
from .promoter import BlueGreenPromoter  # noqa: F401
