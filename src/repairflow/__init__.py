"""repairflow: fault-isolating orchestration for vehicle repair estimates.

Drives authentication, customer/vehicle context, parts sourcing, labor
sourcing, part-to-labor linking and export against unreliable external
platforms, and consolidates the outcome into one PlaybookResult.
"""

__version__ = "0.1.0"
