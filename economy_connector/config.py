"""
Application configuration loaded from environment variables.

Uses pydantic-settings to define typed configuration that automatically reads
from environment variables (prefix CONNECTOR_) or a local .env file.

Two pieces of persisted state are named here:
- the credential secret used to encrypt and decrypt credentials
- the revocation list file (keys_file) holding every honored credential

The enabled-operations map mirrors the bot's own config: an operation mapped
to false is neither routed by the HTTP layer nor executed by the accessor.
"""

from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Server configuration with environment variable bindings.

    Each field maps to an environment variable with the CONNECTOR_ prefix.
    For example, `port` reads from CONNECTOR_PORT and `credential_secret`
    from CONNECTOR_CREDENTIAL_SECRET. Dict fields such as `endpoints` are
    read as JSON: CONNECTOR_ENDPOINTS='{"setBalance": false}'.
    """

    # --- Server settings ---

    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "info"

    # --- Credential settings ---

    # Server-wide secret for credential encryption. There is deliberately no
    # default: issuing or validating without one raises ConfigurationError.
    credential_secret: str | None = None

    # Salt for deriving the encryption key from credential_secret.
    # Changing it invalidates every outstanding credential.
    credential_salt: str = "economy-connector-credentials-v1"

    # The revocation list: JSON array of currently honored credentials.
    keys_file: Path = Path("keys.json")

    # --- Data settings ---

    database_path: Path = Path("data/NadekoBot.db")

    # Optional bot credentials JSON (ClientId, OwnerIds) used by getBotInfo.
    bot_credentials_file: Path | None = None

    # Operation name -> enabled flag. Operations not listed are enabled.
    endpoints: dict[str, bool] = {}

    model_config = {
        "env_prefix": "CONNECTOR_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }

    def disabled_operations(self) -> list[str]:
        """Names of the operations switched off in `endpoints`."""
        return [name for name, enabled in self.endpoints.items() if not enabled]


# Singleton instance: import this from other modules.
settings = Settings()
