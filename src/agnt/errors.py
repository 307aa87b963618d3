"""Error taxonomy.

NotFound, InvalidArgument and EdgeReference errors are returned to the
immediate caller (tool dispatch records them on the tool message).
Transport and Storage errors abort a generation round. Fatal errors stop
the process before any round runs.
"""


class AgntError(Exception):
    """Base class for all agnt errors."""


class NotFoundError(AgntError):
    """A chat, message, node or edge id does not exist."""


class InvalidArgumentError(AgntError):
    """Bad chat state value or malformed tool arguments."""


class EdgeReferenceError(AgntError):
    """An edge endpoint names a node that does not exist."""


class TransportError(AgntError):
    """The model provider could not be reached or returned an error."""


class StorageError(AgntError):
    """A store transaction failed; nothing from it was committed."""


class FatalError(AgntError):
    """Unrecoverable startup condition."""


class SchemaVersionError(FatalError):
    """The store file carries a schema marker this build does not know."""

    def __init__(self, version: str):
        super().__init__(f"unknown store schema version {version!r}")
        self.version = version


class ToolLoopLimitError(AgntError):
    """The model kept calling tools past the configured chain depth."""


class ConfigError(AgntError):
    """Settings file or environment is unusable."""


class GenerationCancelledError(AgntError):
    """The worker shut down before or while running a round."""
