from .settings import ScannerSettings

__all__ = ["ScannerSettings"]
