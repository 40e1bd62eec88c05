"""Exception taxonomy for CTI.

Fatal errors (config, volume, tool, state file) abort a run and map to a
non-zero exit code. ConversionError and UploadError are per-file or
per-batch failures that the pipeline logs and counts without aborting.
"""


class CtiError(RuntimeError):
    """Base class for all CTI errors."""


class ConfigError(CtiError):
    """Configuration is missing, malformed or fails validation."""


class VolumeNotFoundError(CtiError):
    """No mounted volume carries the requested label."""


class ToolNotFoundError(CtiError):
    """A required external executable is not installed or not reachable."""


class StateFileError(CtiError):
    """The state file cannot be read, parsed or written."""


class ConversionError(CtiError):
    """An external converter failed for a single file."""


class UploadError(CtiError):
    """The uploader failed for a batch or a single file."""
