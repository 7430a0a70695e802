"""Connection options for the cache backends.

Options can be given explicitly or read from ``TAGCACHE_*`` environment
variables. Empty strings, ``None`` and ``False`` are treated as unset so that
an environment-specific configuration can discard values it inherited, for
example dropping the production credentials in a development setup.
"""

import os
from typing import Any, Dict, Mapping, Optional
from urllib.parse import quote_plus

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    model_validator,
)

from tagcache.exceptions import ConfigurationError

DEFAULT_HOST = "127.0.0.1"
DEFAULT_DATABASE_NAME = "Db_Cache"
DEFAULT_COLLECTION = "C_Cache"
DEFAULT_LIFETIME = 3600

ENV_PREFIX = "TAGCACHE_"

# Option name -> environment variable suffix
_ENV_OPTIONS = {
    "host": "HOST",
    "port": "PORT",
    "username": "USERNAME",
    "password": "PASSWORD",
    "database_name": "DATABASE_NAME",
    "collection": "COLLECTION",
    "db_index": "DB_INDEX",
    "lifetime": "LIFETIME",
}


def _is_unset(value: Any) -> bool:
    return value is None or value is False or value == ""


def _is_numeric(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, str) and value.strip().isdigit()


class BackendOptions(BaseModel):
    """Connection and lifetime options shared by all backends.

    Attributes:
        host: Datastore host name
        port: Datastore port, ``None`` selects the driver default
        username: Username to authenticate as
        password: Password to authenticate with
        database_name: MongoDB database name, also part of the Redis key namespace
        collection: MongoDB collection name or Redis keyspace
        db_index: Redis logical database number
        lifetime: Default cache lifetime in seconds (0 means infinite)
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    host: str = DEFAULT_HOST
    port: Optional[int] = None
    username: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("username", "user")
    )
    password: Optional[str] = None
    database_name: str = Field(
        default=DEFAULT_DATABASE_NAME,
        validation_alias=AliasChoices("database_name", "dbname", "databaseName"),
    )
    collection: str = Field(
        default=DEFAULT_COLLECTION,
        validation_alias=AliasChoices(
            "collection", "collectionOrKeyspace", "keyspace"
        ),
    )
    db_index: int = 0
    lifetime: int = Field(default=DEFAULT_LIFETIME, ge=0)

    @model_validator(mode="before")
    @classmethod
    def _discard_unset(cls, data: Any) -> Any:
        """Drop unset values so the field defaults apply."""
        if not isinstance(data, Mapping):
            return data
        cleaned = {key: value for key, value in data.items() if not _is_unset(value)}
        if "port" in cleaned and not _is_numeric(cleaned["port"]):
            del cleaned["port"]
        return cleaned

    @property
    def has_credentials(self) -> bool:
        return bool(self.username) and bool(self.password)

    def connection_url(self, scheme: str, default_port: int, path: str) -> str:
        """Assemble a ``scheme://[user:password@]host:port/path`` URL.

        The credentials segment is only added when both username and
        password are set.

        Args:
            scheme: URL scheme, e.g. ``mongodb`` or ``redis``
            default_port: Port used when no port was configured
            path: Trailing path segment (database name or index)

        Returns:
            Connection URL
        """
        parts = [f"{scheme}://"]
        if self.has_credentials:
            parts.append(
                f"{quote_plus(str(self.username))}:{quote_plus(str(self.password))}@"
            )
        parts.append(f"{self.host}:{self.port or default_port}/{path}")
        return "".join(parts)


def options_from_env(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Read backend options from ``TAGCACHE_*`` environment variables.

    Args:
        environ: Mapping to read from (defaults to ``os.environ``)

    Returns:
        Dictionary with only the options that are present in the environment
    """
    if environ is None:
        environ = os.environ

    options: Dict[str, Any] = {}
    for option, suffix in _ENV_OPTIONS.items():
        value = environ.get(f"{ENV_PREFIX}{suffix}")
        if value is not None:
            options[option] = value
    return options


def load_options(
    options: Optional[Mapping[str, Any]] = None, use_env: bool = True
) -> BackendOptions:
    """Build :class:`BackendOptions`, layering explicit options over the environment.

    Args:
        options: Explicit options, these take precedence
        use_env: Whether to read ``TAGCACHE_*`` variables first

    Returns:
        Validated backend options
    """
    merged: Dict[str, Any] = options_from_env() if use_env else {}
    if options:
        merged.update(options)
    return parse_options(merged)


def parse_options(options: Mapping[str, Any]) -> BackendOptions:
    """Validate raw options.

    Raises:
        ConfigurationError: If an option has an invalid value
    """
    try:
        return BackendOptions.model_validate(dict(options))
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid cache backend options: {e}", details={"errors": e.errors()}
        ) from e
