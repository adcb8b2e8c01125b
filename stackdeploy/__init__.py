"""stackdeploy: blue/green Terraform deployments across environments.

Stacks are (environment, slot) pairs declared in ``stackdeploy.yml``. Each run
resolves variables and secrets, drives ``terraform init/plan/apply`` per stack
and optionally cuts traffic over to the freshly deployed slot.
"""

from __future__ import annotations

__all__ = ["__version__"]
__version__ = "0.1.0"
