from __future__ import annotations


class NuIOError(RuntimeError):
    """Base class for every fatal condition raised by nuio."""


class InputError(NuIOError):
    pass


class ScanError(NuIOError):
    pass


class DatabaseError(NuIOError):
    pass


class ManifestError(NuIOError):
    pass


class SampleIOError(NuIOError):
    pass


class AggregationError(NuIOError):
    pass


class ConsistencyError(AggregationError):
    """Fragments disagree on sample kind or beam mode."""
