# Storage governance bounded context root
from .domain import OperationKind, OrphanType, ProviderKind, StorageConfig, StorageFile

__all__ = ["OperationKind", "OrphanType", "ProviderKind", "StorageConfig", "StorageFile"]
