"""Encrypted secret store.

The encrypted file lives at ``.stackdeploy/secretstore.json.gpg`` (override with
STACKDEPLOY_SECRETSTORE_PATH). The decryption key is provided via
STACKDEPLOY_SECRETSTORE_PASSPHRASE or STACKDEPLOY_SECRETSTORE_PASSPHRASE_B64.

Secret values are never printed and never written to disk by this package.
"""

from .loader import SecretStore, empty_store, load_secretstore  # noqa: F401
from .requirements import lookup_secret, missing_secrets_by_environment  # noqa: F401
