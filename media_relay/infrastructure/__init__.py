"""
Infrastructure layer - external service integrations.

Each subdirectory wraps an external dependency:
- whatsapp: Encrypted media download and decryption (WhatsApp CDN)
- storage: Object storage (S3/R2/MinIO)

These wrappers translate between external formats and the relay pipeline.
"""
