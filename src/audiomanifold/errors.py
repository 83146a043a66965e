"""
Exception hierarchy for the analysis pipeline.

Only malformed input, upstream decode failures and explicit cancellation
abort a run. Numeric degeneracies (silence, zero variance, empty
normalization ranges) are resolved by local guards and never raise.
"""


class ManifoldError(Exception):
    """Base class for all pipeline errors."""


class InputError(ManifoldError, ValueError):
    """The sample buffer cannot be analyzed (empty, too short, bad rate)."""


class UpstreamDecodeError(ManifoldError):
    """The decoder could not turn the source file into PCM samples."""


class ReducerFailure(ManifoldError):
    """
    Raised inside the PCA reducer when the eigen-extraction cannot proceed.

    Never escapes :meth:`PCAReducer.reduce`, which falls back to a fixed
    projection instead.
    """


class AnalysisAborted(ManifoldError):
    """The caller cancelled the run between frames."""
