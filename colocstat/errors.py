class ColocError(Exception):
    """Base class for every error raised by colocstat."""


class NumericalInstabilityError(ColocError, ArithmeticError):
    """
    A correlation came out NaN or infinite.

    Usually caused by zero variance in the accepted sample set, e.g. when too
    few pixels pass the threshold filter.

    Attributes
    ----------
    n_samples : int
        Number of samples that were accepted into the computation.
    """

    def __init__(self, n_samples, message=None):
        self.n_samples = int(n_samples)
        if message is None:
            message = (
                "A numerical problem occurred: the input data is unsuitable for "
                f"this algorithm. Possibly too few pixels (in range were: {self.n_samples})."
            )
        super().__init__(message)


class ContractViolation(ColocError, ValueError):
    """Paired channels do not share cardinality or iteration order."""


class UnsupportedModeError(ColocError, ValueError):
    """An unknown threshold mode reached a dispatch point."""


class PermutationCancelled(ColocError, RuntimeError):
    """
    A permutation run was stopped between iterations.

    ``partial`` holds a Bunch with the scores completed before the stop.
    """

    def __init__(self, partial, message=None):
        self.partial = partial
        if message is None:
            message = (
                f"Permutation test cancelled after {partial.n_completed} of "
                f"{partial.n_randomizations} randomizations."
            )
        super().__init__(message)
