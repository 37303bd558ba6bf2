"""Edge proxy serving media from a private, credential-gated object store."""

from .app import create_app
from .classify import ContentClassifier, MediaClass
from .proxy import MediaEdgeProxy
from .settings import CacheSettings, OriginSettings, TransformSettings
from .signing import OriginSigner, SigningMode

__all__ = [
    "CacheSettings",
    "ContentClassifier",
    "MediaClass",
    "MediaEdgeProxy",
    "OriginSettings",
    "OriginSigner",
    "SigningMode",
    "TransformSettings",
    "create_app",
]
