"""
Estimator selectors.

Every estimator switch is an explicit enum so that dispatch happens on a
closed set of tags rather than on inspected data types.
"""

from enum import Enum

from models.errors import InputValidationError


class _ParsableEnum(Enum):
    """Enum that also accepts its string value."""

    @classmethod
    def parse(cls, value, parameter: str):
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            choices = ", ".join(m.value for m in cls)
            raise InputValidationError(
                f"Unknown {parameter} {value!r}",
                parameter=parameter,
                hint=f"choose one of: {choices}",
            ) from None


class CpueMode(_ParsableEnum):
    """How catch and effort are combined into a rate."""

    AUTO = "auto"
    RATIO_OF_MEANS = "ratio_of_means"
    MEAN_OF_RATIOS = "mean_of_ratios"


class TripCompleteness(_ParsableEnum):
    """Completion status of the interviews in one group."""

    COMPLETE = "complete"
    INCOMPLETE = "incomplete"
    MIXED = "mixed"


class LengthBiasCorrection(_ParsableEnum):
    """Correction for length-biased intercept sampling of roving trips."""

    NONE = "none"
    POLLOCK = "pollock"


class EffortMethod(_ParsableEnum):
    """Count-to-effort conversion."""

    INSTANTANEOUS = "instantaneous"
    PROGRESSIVE = "progressive"
    BUSROUTE = "busroute"
    AERIAL = "aerial"


class VarianceMode(_ParsableEnum):
    """Relationship between the effort and CPUE estimates in a product."""

    INDEPENDENT = "independent"
    CORRELATED = "correlated"


class WeightMethod(_ParsableEnum):
    """Access-point weight adjustment."""

    STANDARD = "standard"
    POST_STRATIFY = "post_stratify"


class ReplicateMethod(_ParsableEnum):
    """Replicate-weight resampling scheme."""

    BOOTSTRAP = "bootstrap"
    JACKKNIFE = "jackknife"
