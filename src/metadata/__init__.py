"""Package metadata from the PyPI JSON API and direct wheel references."""

from .provider import MetadataProvider
from .transport import AiohttpTransport, FetchResult, RequestsTransport, Transport

__all__ = ["AiohttpTransport", "FetchResult", "MetadataProvider", "RequestsTransport", "Transport"]
