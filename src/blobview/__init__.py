"""blobview - Open PDFs behind ephemeral blob: references in a viewer."""

__version__ = "0.1.0"

from .classify import Classification, classify_by_bytes, classify_by_type
from .config import BlobviewConfig, load_config
from .errors import BlobviewError, RenderError, SurfaceError
from .intercept import Interceptor
from .ports import HostPorts
from .registry import Blob, ObjectRegistry
from .resolver import BlobResolver
from .session import Session, install

__all__ = [
    "Blob",
    "BlobResolver",
    "BlobviewConfig",
    "BlobviewError",
    "Classification",
    "HostPorts",
    "Interceptor",
    "ObjectRegistry",
    "RenderError",
    "Session",
    "SurfaceError",
    "classify_by_bytes",
    "classify_by_type",
    "install",
    "load_config",
    "__version__",
]
