"""Storage of uploaded document originals."""
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional
from uuid import uuid4

from dualscan.models import ImageUpload

logger = logging.getLogger(__name__)


class UploadStorage:
    """Writes uploaded originals to a directory under unique names."""
    
    def __init__(self, upload_dir: Path) -> None:
        self.upload_dir = upload_dir
    
    def save(self, content: bytes, filename: str) -> str:
        """
        Store an original and return its path.
        
        Args:
            content: File content
            filename: Name supplied by the client (directories are stripped)
            
        Returns:
            Path of the stored file
        """
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        safe_name = Path(filename or "").name or "upload"
        unique_name = f"{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid4().hex[:8]}_{safe_name}"
        path = self.upload_dir / unique_name
        path.write_bytes(content)
        logger.debug(f"Stored {filename}: {len(content)} bytes at {path}")
        return str(path)


def store_original(storage: Optional[UploadStorage], upload: ImageUpload) -> Optional[str]:
    """Persist an upload's original once, recording and returning its path."""
    if storage is not None and upload.path is None:
        upload.path = storage.save(upload.content, upload.filename)
    return upload.path
