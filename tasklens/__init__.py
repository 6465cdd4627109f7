"""TaskLens: turn images of plans into validated task records."""

__version__ = "0.1.0"
