"""
Test-method and comparison-selector variants for GLM testing
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Union

import numpy as np

from ..exceptions import ConfigurationError


@dataclass(frozen=True)
class QLFTest:
    """Quasi-likelihood F-test"""

    name = "QLFTest"


@dataclass(frozen=True)
class LRTest:
    """Likelihood ratio test"""

    name = "LRTest"


@dataclass(frozen=True)
class Treat:
    """
    Test against a minimum fold change

    Args:
        lfc: Absolute log2 fold-change floor; an interaction is only called
            when its change is shown to exceed it
    """

    lfc: float = 1.0
    name = "Treat"

    def __post_init__(self):
        if not np.isfinite(self.lfc) or self.lfc < 0:
            raise ConfigurationError(
                f"Treat fold-change floor must be non-negative, got {self.lfc}"
            )


TestMethod = Union[QLFTest, LRTest, Treat]

TEST_METHODS = ("QLFTest", "LRTest", "Treat")


def parse_test_method(name: Union[str, TestMethod], lfc: float = 1.0) -> TestMethod:
    """Build a test method from its configuration name"""
    if isinstance(name, (QLFTest, LRTest, Treat)):
        return name
    if name == "QLFTest":
        return QLFTest()
    if name == "LRTest":
        return LRTest()
    if name == "Treat":
        return Treat(lfc=float(lfc))
    raise ConfigurationError(f"method must be one of {TEST_METHODS}, got {name!r}")


@dataclass(frozen=True)
class Coefficient:
    """Test a single design coefficient (0-based column index) for zero"""

    index: int

    def describe(self, columns: Sequence[str]) -> str:
        return f"coefficient {columns[self.index]}"


@dataclass(frozen=True)
class Contrast:
    """Test a linear combination of design coefficients for zero"""

    vector: Tuple[float, ...]

    def __init__(self, vector: Sequence[float]):
        object.__setattr__(self, "vector", tuple(float(v) for v in vector))

    def as_array(self) -> np.ndarray:
        return np.asarray(self.vector, dtype=float)

    def describe(self, columns: Sequence[str]) -> str:
        terms = [
            f"{weight:g}*{column}"
            for weight, column in zip(self.vector, columns)
            if weight != 0
        ]
        return "contrast " + " + ".join(terms)


Selector = Union[Coefficient, Contrast]


def resolve_selector(
    coef: Optional[Union[int, Coefficient]] = None,
    contrast: Optional[Union[Sequence[float], Contrast]] = None,
) -> Selector:
    """
    Turn the coef/contrast pair of options into a single selector

    Exactly one of the two must be given.
    """
    if (coef is None) == (contrast is None):
        raise ConfigurationError(
            "You must enter a value for contrast or a coef, but not both"
        )

    if coef is not None:
        if isinstance(coef, Coefficient):
            return coef
        if isinstance(coef, bool) or int(coef) != coef:
            raise ConfigurationError(f"coef must be an integer index, got {coef!r}")
        return Coefficient(int(coef))

    if isinstance(contrast, Contrast):
        return contrast
    vector = np.asarray(contrast, dtype=float).ravel()
    if vector.size == 0 or not np.all(np.isfinite(vector)):
        raise ConfigurationError("contrast must be a non-empty vector of finite numbers")
    if not np.any(vector != 0):
        raise ConfigurationError("contrast must have at least one non-zero weight")
    return Contrast(vector)
