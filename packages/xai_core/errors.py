# packages/xai_core/errors.py


class ExplanationError(Exception):
    """Base class for everything `ExplanationEngine.explain` raises on purpose."""

    recoverable: bool = False


class EngineDisabledError(ExplanationError):
    """The engine is switched off. The caller must reconfigure it."""

    recoverable = False

    def __init__(self):
        super().__init__("Explanation engine is disabled")


class AlreadyInProgressError(ExplanationError):
    """An explanation for the same fingerprint is already being computed."""

    recoverable = True

    def __init__(self, fingerprint: str):
        super().__init__(f"Explanation already in progress for {fingerprint[:12]}")
        self.fingerprint = fingerprint


class ComputationError(ExplanationError):
    """
    A sub-engine or the predictor failed. The original exception is kept as
    __cause__; whether a retry helps depends on it.
    """

    def __init__(self, stage: str, cause: BaseException):
        super().__init__(f"{stage} failed: {cause}")
        self.stage = stage


class ExplanationTimeoutError(ExplanationError):
    """The deadline passed before the explanation finished. Retry with more time."""

    recoverable = True

    def __init__(self, timeout_ms: float):
        super().__init__(f"Explanation exceeded its {timeout_ms:.0f} ms deadline")
        self.timeout_ms = timeout_ms
