class InvalidParameterShape(ValueError):
    """Coefficients do not match the covariates or the 2x2 class layout."""


class InvalidPriorShape(ValueError):
    """Prior arrays do not match the coefficient layout or its fixed entries."""


class NumericDegeneracyError(ArithmeticError):
    """Every true-class hypothesis of some subject has zero probability."""

    def __init__(self, subject_indices: list[int]) -> None:
        self.subject_indices = subject_indices
        shown = subject_indices[:10]
        super().__init__(
            f"Responsibility mass underflowed for {len(subject_indices)} "
            f"subject(s), first indices: {shown}"
        )
