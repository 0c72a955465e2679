"""
Attribution pipeline stages, the shared inference client and the orchestrator.
"""

from .errors import *
from .inference import *
from .describer import *
from .matcher import *
from .selector import *
from .analyzer import *
from .pipeline import *
