"""
Misclassified binary outcome estimation.

Fits a logistic true-outcome mechanism jointly with a logistic
observation (misclassification) mechanism, by EM or by MCMC.
"""

import logging
import sys

# Console handler shared by every logger that has no handler of its own.
console_handler = logging.StreamHandler(sys.stdout)
console_handler.setLevel(logging.DEBUG)
formatter = logging.Formatter(
    "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
console_handler.setFormatter(formatter)

# Package loggers (created with __name__) propagate to this logger.
package_logger = logging.getLogger(__name__)
package_logger.setLevel(logging.INFO)
package_logger.addHandler(console_handler)

# numba emits compilation chatter at DEBUG
logging.getLogger("numba").setLevel(logging.WARNING)
