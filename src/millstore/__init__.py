# Adapter for the mill's store database exports
# Holds the table/column names and code conventions specific to that deployment

from .loader import MillStoreLoader, LoadedExports

__all__ = ["MillStoreLoader", "LoadedExports"]
