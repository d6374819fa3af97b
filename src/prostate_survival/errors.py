"""Error taxonomy for the prostate survival workflow.

Every stage fails fast: errors propagate to the caller and abort the run.
Each error also derives from the closest builtin exception so that generic
handlers (``except ValueError``) keep working.
"""


class WorkflowError(Exception):
    """Base class for all workflow errors."""


class DataUnavailable(WorkflowError, FileNotFoundError):
    """The dataset source could not be located or read."""


class SchemaMismatch(WorkflowError, ValueError):
    """The loaded data does not carry the columns the workflow requires."""


class UnrecognizedCategory(WorkflowError, ValueError):
    """The cleaning rule received a category value it cannot map.

    Attributes:
        column: Name of the column being cleaned
        values: The distinct offending values
    """

    def __init__(self, column: str, values):
        self.column = column
        self.values = list(values)
        super().__init__(
            f"Column '{column}' has values that contain neither 'dead' nor 'alive': "
            f"{self.values[:10]}"
        )


class InsufficientPredictors(WorkflowError, ValueError):
    """Imputation cannot proceed for a variable.

    Raised when a variable with missing values has no usable predictor
    columns, or has no observed values to model.
    """

    def __init__(self, variable: str, reason: str = "no usable predictor columns"):
        self.variable = variable
        self.reason = reason
        super().__init__(f"Cannot impute '{variable}': {reason}")


class ConvergenceFailure(WorkflowError, RuntimeError):
    """A proportional hazards fit did not converge.

    Attributes:
        imputation: Index of the completed dataset whose fit failed (None for
            a single fit)
    """

    def __init__(self, message: str, imputation=None):
        self.imputation = imputation
        if imputation is not None:
            message = f"[imputation {imputation}] {message}"
        super().__init__(message)

    def __reduce__(self):
        # Keep the imputation index when raised inside a joblib worker
        return (_rebuild_convergence_failure, (str(self), self.imputation))


def _rebuild_convergence_failure(message: str, imputation):
    error = ConvergenceFailure(message)
    error.imputation = imputation
    return error
