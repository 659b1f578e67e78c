from enum import Enum


class ConvergenceStatus(str, Enum):
    CONVERGED = "converged"
    MAX_ITERATIONS = "max_iterations"
    CANCELLED = "cancelled"


class EMMethod(str, Enum):
    EM = "em"
    SQUAREM = "squarem"


class PriorFamily(str, Enum):
    UNIFORM = "uniform"
    NORMAL = "normal"
    DOUBLE_EXPONENTIAL = "double_exponential"
    T = "t"


class LabelSwitchCriterion(str, Enum):
    INTERCEPT = "intercept"
    SENSITIVITY = "sensitivity"
