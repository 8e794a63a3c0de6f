"""Utility modules for keyward."""

from . import canonical_json
from . import encoding
from . import hashing
from . import time

__all__ = ['canonical_json', 'encoding', 'hashing', 'time']
