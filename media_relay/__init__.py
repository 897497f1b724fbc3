"""
WhatsApp Media Relay - decrypts WhatsApp media into object storage.

This package contains the complete application:
- core: Framework-agnostic relay pipeline (naming, keys, orchestration)
- infrastructure: External service integrations (WhatsApp CDN, S3/R2)
- api: FastAPI routes and dependencies
- config: Application configuration
"""

__version__ = "0.1.0"
