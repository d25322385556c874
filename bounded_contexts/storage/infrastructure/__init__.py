"""Storage infrastructure layer: provider adapters, registries and config."""

from .azure_blob import *
from .config_loader import *
from .factory import *
from .local import *
from .registry import *
from .s3 import *
