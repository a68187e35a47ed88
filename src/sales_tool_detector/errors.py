from __future__ import annotations


class PipelineError(Exception):
    """Base class for failures raised inside the detection pipeline."""


class ProviderError(PipelineError):
    """Job-search provider failed: timeout, rate limit or malformed response."""


class ClassificationError(PipelineError):
    """Text-classification call failed or returned output we cannot use."""


class ConfigurationError(PipelineError, ValueError):
    """Missing credentials or unreachable datastore for a subsystem."""
