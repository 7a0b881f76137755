"""Exception taxonomy for the simulation harness.

Errors that would corrupt a replay (bad config, missing required series)
abort the run before any persisted state is touched. Expected noise from
asynchronous data and the external sink never escapes the component that
hit it.
"""


class ArbSimError(Exception):
    """Base exception for all harness errors."""


class ConfigError(ArbSimError):
    """Raised for a malformed or missing rule-set, hedge or strategy config.

    Also raised for an exchange with no known adapter. The message always
    names the offending file path or config key.
    """


class DataGapError(ArbSimError):
    """Raised when a required series file is missing or empty."""

    def __init__(self, path: str, reason: str = "missing or empty") -> None:
        self.path = path
        super().__init__(f"{path}: {reason}")


class ExternalSinkError(ArbSimError):
    """Raised inside a sink when the mock exchange call fails or times out.

    Sinks catch it themselves and report a failed SinkResult instead.
    """
