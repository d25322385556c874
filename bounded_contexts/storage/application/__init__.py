"""Storage application layer: service, quota, metrics and reconciliation."""

from .bootstrap import *
from .metrics import *
from .quota import *
from .reconciler import *
from .schemas import *
from .services import *
from .usage import *
