class ProcessorError(Exception):
    """Base exception for all harvest processing errors."""


class DocumentNotFoundError(ProcessorError):
    """Raised when a book no longer exists in the catalog or in storage."""


class CatalogError(ProcessorError):
    """Raised when a catalog query or update cannot be carried out."""


class DownloadError(ProcessorError):
    """Raised when a book's files cannot be fetched from storage."""


class AnalysisError(ProcessorError):
    """Raised when a book's markup or metadata cannot be analyzed."""


class RendererError(ProcessorError):
    """Raised when the external renderer cannot be started."""


class FingerprintError(ProcessorError):
    """Raised when an image fingerprint cannot be computed."""
