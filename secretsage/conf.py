"""SecretSage process-level settings.

Values read once from the environment at import time; everything that a
user is expected to change per project lives in ``config.yaml`` instead
(see :mod:`secretsage.vault.config`).
"""
import os

# Directory that holds a vault (identity, recipient, records, config).
SECRETSAGE_DIRNAME = os.environ.get("SECRETSAGE_DIRNAME", ".secretsage")

VAULT_FILENAME = "vault.json"
IDENTITY_FILENAME = "identity.txt"
RECIPIENT_FILENAME = "recipient.txt"
LOCK_FILENAME = "vault.lock"
CONFIG_FILENAME = "config.yaml"

ENV_FILENAME = os.environ.get("SECRETSAGE_ENV_FILE", ".env")
GITIGNORE_FILENAME = ".gitignore"

# Seconds to wait for the advisory vault lock before giving up.
DEFAULT_LOCK_TIMEOUT = float(os.environ.get("SECRETSAGE_LOCK_TIMEOUT", "10"))

# Credential names are expected in ENV convention, e.g. OPENAI_API_KEY.
CREDENTIAL_NAME_PATTERN = r"^[A-Z][A-Z0-9_]*$"

LOG_LEVEL = os.environ.get("SECRETSAGE_LOG_LEVEL", "WARNING").upper()
