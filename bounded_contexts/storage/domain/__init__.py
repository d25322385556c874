"""Storage governance domain layer: value objects, errors and protocols."""

from .config import *
from .entities import *
from .errors import *
from .services import *
from .types import *
from .units import *
