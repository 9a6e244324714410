"""
Soul Registry - similarity-based resolution between npm packages and crate alternatives.
"""

from .core.config import VERSION as __version__
