from ..core.store import BlobStore
from ..types import StorageConfig
from .filesystem import FilesystemBlobStore

__all__ = ["BlobStore", "FilesystemBlobStore", "create_store"]


def create_store(config: StorageConfig) -> BlobStore:
    """Build the configured storage backend. ``s3`` needs the ``s3`` extra."""
    if config.backend == "s3":
        from .s3 import S3BlobStore

        return S3BlobStore(
            bucket=config.bucket,
            prefix=config.prefix,
            region=config.region,
            public_base_url=config.public_base_url,
            public_read=config.public_read,
        )
    return FilesystemBlobStore(root=config.root, public_base_url=config.public_base_url)
