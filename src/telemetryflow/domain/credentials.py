"""TelemetryFlow API credentials value object."""

from pydantic import BaseModel, ConfigDict, SecretStr

from telemetryflow.errors import CredentialFormatError

KEY_ID_PREFIX = "tfk_"
KEY_SECRET_PREFIX = "tfs_"


class Credentials(BaseModel):
    """Immutable API key pair that validates itself on construction.

    The secret is stored as a SecretStr so it never shows up in repr, str or
    serialized output. Equality and hashing are by value.

    Example:
        >>> creds = Credentials("tfk_abc", "tfs_xyz")
        >>> creds.authorization_header
        'Bearer tfk_abc:tfs_xyz'
        >>> str(creds)
        'Credentials(key_id=tfk_abc, key_secret=***)'
    """

    model_config = ConfigDict(frozen=True)

    key_id: str
    key_secret: SecretStr

    def __init__(self, key_id: str, key_secret: str) -> None:
        """Validate and create credentials.

        Args:
            key_id: API key id, must start with "tfk_"
            key_secret: API key secret, must start with "tfs_"

        Raises:
            CredentialFormatError: If either value is empty or mis-prefixed
        """
        if not key_id:
            raise CredentialFormatError("API key ID cannot be empty")
        if not key_secret:
            raise CredentialFormatError("API key secret cannot be empty")
        if not key_id.startswith(KEY_ID_PREFIX):
            raise CredentialFormatError(
                f"invalid key ID format: must start with '{KEY_ID_PREFIX}', got: {key_id}"
            )
        if not key_secret.startswith(KEY_SECRET_PREFIX):
            # never echo any part of the secret
            raise CredentialFormatError(
                f"invalid key secret format: must start with '{KEY_SECRET_PREFIX}'"
            )
        super().__init__(key_id=key_id, key_secret=SecretStr(key_secret))

    @property
    def authorization_header(self) -> str:
        """Authorization value sent with every export: `Bearer <key_id>:<key_secret>`."""
        return f"Bearer {self.key_id}:{self.key_secret.get_secret_value()}"

    def __str__(self) -> str:
        return f"Credentials(key_id={self.key_id}, key_secret=***)"

    def __repr__(self) -> str:
        return str(self)
