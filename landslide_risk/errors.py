"""
Error taxonomy for the risk-scoring pipeline.

DomainDegenerate and MissingCoverage are handled where the raster stage
finishes; EmptySample is surfaced to the caller of validation / training.
A categorical code missing from its remap table is not an exception: the
pixel becomes no-data (NaN).
"""


class LandslideRiskError(Exception):
    """Base class for pipeline errors."""


class DomainDegenerateError(LandslideRiskError, ValueError):
    """A layer has zero variance (min == max) over the study domain."""


class MissingCoverageError(LandslideRiskError):
    """A reduction over the domain found no valid pixels."""


class EmptySampleError(LandslideRiskError, ValueError):
    """A point set, sample or validation partition is empty."""
