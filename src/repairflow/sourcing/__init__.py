"""Parts sourcing: price normalization and candidate selection."""

from repairflow.sourcing.selector import Candidate, normalize_price, pick_best

__all__ = ["Candidate", "normalize_price", "pick_best"]
