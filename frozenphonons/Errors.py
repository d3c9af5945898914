"""
Exceptions raised by the phonon machinery.

Each error also derives from the builtin exception that describes
the same kind of failure, so that generic handlers keep working.
"""

__all__ = ["FrozenPhononsError", "QptNotFound", "ModeNotFound", "MappingFailure",
           "FFTUnavailable", "ASRUncorrectable", "DimensionMismatch",
           "IncompatibleMerge", "MissingResponse"]


class FrozenPhononsError(Exception):
    pass


class QptNotFound(FrozenPhononsError, KeyError):
    """
    The requested q point is not stored (within tolerance).
    The caller may add the q point and retry.
    """
    def __str__(self):
        # KeyError quotes its argument, we want the plain message
        return Exception.__str__(self)


class ModeNotFound(FrozenPhononsError, IndexError):
    """The mode index is out of range."""


class MappingFailure(FrozenPhononsError):
    """The atoms of a supercell cannot be mapped on the reference unit cell."""


class FFTUnavailable(FrozenPhononsError, ImportError):
    """The FFT backend (scipy.fft) is not available."""


class ASRUncorrectable(FrozenPhononsError):
    """The acoustic sum rule correction cannot be computed."""


class DimensionMismatch(FrozenPhononsError, ValueError):
    """The size of the input data does not match the number of atoms."""


class IncompatibleMerge(FrozenPhononsError, ValueError):
    """Two mode databases with different atoms or modes cannot be merged."""


class MissingResponse(FrozenPhononsError):
    """
    A response function (dielectric tensor, effective charges) has not been recorded,
    e.g. the force constants come from a non polar calculation.
    """
