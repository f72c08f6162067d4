"""ERA 835 decoding and payment posting."""

__version__ = "0.1.0"
