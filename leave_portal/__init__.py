"""Leave Portal — leave-request lifecycle and day-balance accounting."""

__version__ = "1.0.0"
