"""Recurring membership maintenance sweeps."""

from .fee_collection import run_fee_collection_sweep  # noqa: F401
from .visit_expiry import run_visit_expiry_sweep  # noqa: F401
