"""Offload a CMS media library to S3 with WebP transcoding."""

__version__ = "1.3.0"
