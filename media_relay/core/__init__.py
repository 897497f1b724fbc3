"""
Core relay logic.

This module is framework-agnostic - it doesn't import FastAPI, boto3,
or httpx. The pipeline only talks to protocols, so the storage backend
and the media source can be swapped or faked in tests.
"""
