"""strata — versioned installation history with candidate-based update and rollback."""

__version__ = "0.3.0"
