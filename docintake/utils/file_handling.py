"""
File handling utilities for document uploads and stored-file access
"""
import asyncio
import hashlib
import mimetypes
from pathlib import Path
from typing import Tuple

import httpx
from fastapi import UploadFile, HTTPException

from docintake.core.exceptions import ProviderError, TransientProviderError


def calculate_sha256(file_content: bytes) -> str:
    """
    Calculate SHA256 hash of file content.

    Args:
        file_content: Raw bytes of the file

    Returns:
        Hexadecimal SHA256 hash string (64 characters)
    """
    return hashlib.sha256(file_content).hexdigest()


def validate_file_type(filename: str, allowed_extensions: set) -> str:
    """
    Validate file extension and determine MIME type.

    Raises:
        HTTPException 400: If file extension is not allowed
    """
    file_ext = Path(filename).suffix.lower()

    if file_ext not in allowed_extensions:
        raise HTTPException(
            status_code=400,
            detail=f"File type {file_ext} not allowed. Allowed types: {', '.join(sorted(allowed_extensions))}"
        )

    mime_type = mimetypes.guess_type(filename)[0]
    if not mime_type:
        mime_type_map = {
            '.pdf': 'application/pdf',
            '.png': 'image/png',
            '.jpg': 'image/jpeg',
            '.jpeg': 'image/jpeg',
            '.tif': 'image/tiff',
            '.tiff': 'image/tiff',
            '.txt': 'text/plain',
            '.json': 'application/json',
        }
        mime_type = mime_type_map.get(file_ext, 'application/octet-stream')

    return mime_type


def validate_file_size(file_size: int, max_size: int) -> None:
    """
    Validate file size is within allowed limit.

    Raises:
        HTTPException 413: If file size exceeds maximum
    """
    if file_size > max_size:
        max_mb = max_size / (1024 * 1024)
        actual_mb = file_size / (1024 * 1024)
        raise HTTPException(
            status_code=413,
            detail=f"File size {actual_mb:.2f}MB exceeds maximum allowed size of {max_mb:.2f}MB"
        )


async def read_upload(
    file: UploadFile,
    allowed_extensions: set,
    max_file_size: int
) -> Tuple[bytes, str, int]:
    """
    Read an upload and validate its type and size. Nothing is written yet.

    Returns:
        Tuple of (file_content, mime_type, size_bytes)

    Raises:
        HTTPException 400: If file type not allowed
        HTTPException 413: If file size exceeds limit
    """
    file_content = await file.read()
    file_size = len(file_content)

    validate_file_size(file_size, max_file_size)
    mime_type = validate_file_type(file.filename, allowed_extensions)
    return file_content, mime_type, file_size


def stored_path_for(bucket_dir: Path, client_id: str, filename: str, sha256_hash: str) -> Path:
    """Content-addressed location: {bucket_dir}/{client_id}/{sha256}{ext}"""
    return bucket_dir / client_id / f"{sha256_hash}{Path(filename).suffix.lower()}"


def save_file(stored_path: Path, file_content: bytes) -> None:
    stored_path.parent.mkdir(parents=True, exist_ok=True)
    with open(stored_path, 'wb') as f:
        f.write(file_content)


async def read_stored_file(storage_url: str, timeout: float = 30.0) -> bytes:
    """
    Fetch stored document bytes from a local path or an http(s) object store URL.

    Raises:
        TransientProviderError: storage timeout or 5xx (retryable)
        ProviderError: missing/unreadable file or 4xx (terminal)
    """
    if storage_url.startswith(("http://", "https://")):
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.get(storage_url)
        except httpx.TimeoutException as e:
            raise TransientProviderError(f"Storage fetch timed out: {e}")
        except httpx.TransportError as e:
            raise TransientProviderError(f"Storage fetch failed: {e}")
        if response.status_code >= 500 or response.status_code == 429:
            raise TransientProviderError(f"Storage returned HTTP {response.status_code}")
        if response.status_code >= 400:
            raise ProviderError(f"Storage returned HTTP {response.status_code} for {storage_url}")
        return response.content

    path = Path(storage_url)
    try:
        return await asyncio.to_thread(path.read_bytes)
    except FileNotFoundError:
        raise ProviderError(f"Stored file not found: {storage_url}")
    except OSError as e:
        raise ProviderError(f"Stored file unreadable: {storage_url}: {e}")
