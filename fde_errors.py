# -*- coding: utf-8 -*-
"""Error and warning types raised by the FDE modules."""

class FDEError(Exception):
    """Base class for Fixed Dimensional Encoding errors."""

class ConfigurationError(FDEError, ValueError):
    """Raised when a FixedDimensionalEncodingConfig cannot be used."""

class DimensionMismatchError(FDEError, ValueError):
    """Raised when a vector or an encoding has the wrong length."""

class EmptyInputWarning(UserWarning):
    """A vector set with no vectors was encoded; the output is still valid."""
