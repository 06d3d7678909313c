"""Parted Euro backend: shipping quotes, checkout and post-payment settlement."""

__version__ = "1.0.0"
