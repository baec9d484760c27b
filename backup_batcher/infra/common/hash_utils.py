"""Hash utilities."""
import hashlib
from pathlib import Path

HASH_BUFFER_SIZE = 1024 * 1024


def compute_bytes_hash(content: bytes) -> str:
    """
    Compute SHA256 hash of in-memory content.
    
    Args:
        content: Content bytes
        
    Returns:
        SHA256 hash as hex string
    """
    return hashlib.sha256(content).hexdigest()


def compute_file_hash(path: str | Path) -> str:
    """
    Compute SHA256 hash of a file on disk, reading it in chunks.
    
    Args:
        path: File path
        
    Returns:
        SHA256 hash as hex string
        
    Raises:
        OSError: If the file cannot be read
    """
    h = hashlib.sha256()
    with open(path, "rb") as fh:
        while True:
            chunk = fh.read(HASH_BUFFER_SIZE)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()
