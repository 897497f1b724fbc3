#!/usr/bin/env python3
"""
Provision the media bucket before deploying the relay.

Checks that the configured bucket exists and creates it when missing.
The relay itself never checks the bucket on the request path, so run
this once per environment (or set S3_AUTO_CREATE_BUCKET=true).

Usage:
    python scripts/provision_bucket.py
    python scripts/provision_bucket.py --dry-run

Requires:
    - .env file (or environment) with AWS_* / S3_* settings
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path so we can import our modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


async def provision(dry_run: bool = False) -> bool:
    """Create the bucket if needed. Returns True on success."""
    from media_relay.config.settings import get_settings
    from media_relay.infrastructure.storage.client import StorageError, create_storage_client

    settings = get_settings()

    missing = settings.validate_required_fields()
    if missing:
        print(f"ERROR: Missing configuration: {', '.join(missing)}")
        return False

    print(f"Bucket: {settings.s3_bucket}")
    print(f"Endpoint: {settings.s3_endpoint or 'AWS default'} (region {settings.aws_region})")

    if dry_run:
        print("\n=== DRY RUN - Nothing will be created ===")
        return True

    client = create_storage_client(
        config=settings.storage_config(),
        mock_mode=settings.s3_mock_mode,
    )

    try:
        await client.ensure_bucket()
    except StorageError as e:
        print(f"ERROR provisioning bucket: {e}")
        return False

    print("[OK] Bucket is ready")
    return True


def main():
    import argparse

    parser = argparse.ArgumentParser(description='Provision the media relay bucket')
    parser.add_argument('--dry-run', action='store_true', help='Show configuration only, create nothing')
    args = parser.parse_args()

    success = asyncio.run(provision(dry_run=args.dry_run))
    sys.exit(0 if success else 1)


if __name__ == '__main__':
    main()
