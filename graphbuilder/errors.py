"""Status codes and exception types for graph construction runs.

Stage-local problems (a malformed line, a reference that cannot be resolved)
are logged and counted where they happen. Everything that indicates a broken
run (mismatched shard counts, a missing dictionary, an external store that
rejects a write) is raised as a ``GraphBuilderError`` and carried all the way
to process exit with its ``StatusCode``. Anything else that reaches the top is
reported through ``as_graphbuilder_error``: I/O errors as
``UNHANDLED_IO_EXCEPTION``, the rest as ``INDESCRIBABLE_FAILURE``.
"""

from enum import Enum


class StatusCode(Enum):
    SUCCESS = (0, "GRAPHBUILDER: success")
    BAD_COMMAND_LINE = (1, "GRAPHBUILDER: bad command line")
    UNABLE_TO_LOAD_INPUT_FILE = (2, "GRAPHBUILDER: unable to load input file")
    UNHANDLED_IO_EXCEPTION = (3, "GRAPHBUILDER: unhandled IO exception")
    CLASS_INSTANTIATION_ERROR = (4, "GRAPHBUILDER: unknown registered implementation")
    INDESCRIBABLE_FAILURE = (5, "GRAPHBUILDER: failure")
    STORE_ERROR = (6, "GRAPHBUILDER: graph store error")
    SHARD_COUNT_MISMATCH = (7, "GRAPHBUILDER: dictionary shards do not match edge partitions")
    MISSING_DICTIONARY = (8, "GRAPHBUILDER: missing dictionary")

    def __init__(self, code, message):
        self.code = code
        self.message = message


class GraphBuilderError(Exception):
    """Fatal error for the whole run."""

    status = StatusCode.INDESCRIBABLE_FAILURE

    def __init__(self, message, status=None):
        super().__init__(message)
        if status is not None:
            self.status = status

    def __str__(self):
        return f"{self.status.message}: {self.args[0]}"


class ConfigurationError(GraphBuilderError):
    """Raised before any record is processed when the run is misconfigured."""

    status = StatusCode.BAD_COMMAND_LINE


class StoreError(GraphBuilderError):
    """The external graph store rejected an insert, property write or commit."""

    status = StatusCode.STORE_ERROR


class RecordParseError(ValueError):
    """A single raw record or text line could not be parsed.

    Never escapes a stage: callers log it, count it and move on.
    """

    def __init__(self, message, line=None):
        super().__init__(message)
        self.line = line


def as_graphbuilder_error(exc: BaseException) -> GraphBuilderError:
    """Wrap an exception that escaped the pipeline in a ``GraphBuilderError``."""
    if isinstance(exc, GraphBuilderError):
        return exc
    if isinstance(exc, OSError):
        status = StatusCode.UNHANDLED_IO_EXCEPTION
    else:
        status = StatusCode.INDESCRIBABLE_FAILURE
    error = GraphBuilderError(f"{type(exc).__name__}: {exc}", status=status)
    error.__cause__ = exc
    return error
