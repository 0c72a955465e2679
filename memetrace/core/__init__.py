"""
Core infrastructure modules for the dataset database and upload handling.
"""

from .database import *
from .utils import *
