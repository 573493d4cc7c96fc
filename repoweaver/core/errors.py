class WeaverError(Exception):
    """Base pipeline error."""


class ConfigurationError(WeaverError):
    """Raised for static misconfiguration; retrying cannot fix it."""


class UnknownCategoryError(ConfigurationError):
    """Raised when a rule names a category outside the category table."""


class UnknownStrategyError(ConfigurationError):
    """Raised when a strategy config cannot be resolved to an implementation."""


class PluginLoadError(ConfigurationError):
    """Raised when a configured plugin is not registered or fails to initialize."""


class InvalidSourceUrlError(ConfigurationError):
    """Raised when a template URL cannot be parsed into owner/repo."""


class SubdirectoryNotFoundError(ConfigurationError):
    """Raised when a template subdirectory has no files."""


class InvalidJobPayloadError(ConfigurationError):
    """Raised when a persisted job payload does not match its type's schema."""


class MissingRepositoryConfigError(ConfigurationError):
    """Raised when a job targets a repository without stored configuration."""


class PublishError(WeaverError):
    """Raised when no resolved file could be written to the update branch."""


class TemplateFetchError(WeaverError):
    """Raised when a template could not be retrieved; retried by the job queue."""
