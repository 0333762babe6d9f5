"""Custom exceptions for the dedup pipeline."""


class PipelineError(Exception):
    """Base pipeline exception."""
    pass


class ConfigError(PipelineError):
    pass


class OracleError(PipelineError):
    """Oracle returned something the engine cannot use for a batch."""

    def __init__(self, message: str, round_number: int = 0, batch_number: int = 0):
        self.round_number = round_number
        self.batch_number = batch_number
        super().__init__(f"[{round_number:02d}-{batch_number:02d}] {message}")


class LLMAPIError(PipelineError):
    def __init__(self, message: str, status_code: int = 0, retryable: bool = True):
        self.status_code = status_code
        self.retryable = retryable
        super().__init__(message)
