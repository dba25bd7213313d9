"""Local blob storage for complaint photos, addressed by public URL."""
import os
import uuid

from werkzeug.utils import secure_filename


class BlobStoreError(Exception):
    """Raised when a photo cannot be stored, found, or removed."""


class LocalBlobStore:
    """Stores uploads under a root folder and hands out URLs below ``public_base_url``."""

    def __init__(self, root: str, public_base_url: str = "/complaints/images"):
        self.root = os.path.abspath(root)
        self.public_base_url = (public_base_url or "").rstrip("/")

    @classmethod
    def from_config(cls, config) -> "LocalBlobStore":
        return cls(config["COMPLAINT_UPLOAD_FOLDER"], config.get("BLOB_PUBLIC_BASE_URL", "/complaints/images"))

    def path_for(self, filename: str) -> str:
        safe_name = secure_filename(filename or "")
        if not safe_name or safe_name != filename:
            raise BlobStoreError("Invalid blob name")
        path = os.path.abspath(os.path.join(self.root, safe_name))
        if os.path.dirname(path) != self.root:
            raise BlobStoreError("Blob path escapes storage root")
        return path

    def url_for(self, filename: str) -> str:
        return f"{self.public_base_url}/{filename}"

    def filename_from_url(self, url: str) -> str:
        prefix = f"{self.public_base_url}/"
        if not url or not url.startswith(prefix):
            raise BlobStoreError("URL does not belong to this store")
        return url[len(prefix):]

    def upload(self, data: bytes, extension: str, prefix: str = "") -> str:
        """Write ``data`` under a fresh unique name and return its public URL."""
        extension = (extension or "").lower().lstrip(".")
        if not extension:
            raise BlobStoreError("File extension is required")
        filename = f"{prefix}{uuid.uuid4()}.{extension}"
        path = self.path_for(filename)
        try:
            os.makedirs(self.root, exist_ok=True)
            with open(path, "xb") as f:
                f.write(data)
        except OSError as exc:
            raise BlobStoreError(f"Could not store {filename}") from exc
        return self.url_for(filename)

    def read(self, url: str) -> bytes:
        path = self.path_for(self.filename_from_url(url))
        try:
            with open(path, "rb") as f:
                return f.read()
        except OSError as exc:
            raise BlobStoreError("Stored photo is unavailable") from exc

    def delete(self, url: str) -> None:
        path = self.path_for(self.filename_from_url(url))
        try:
            os.remove(path)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise BlobStoreError("Could not remove stored photo") from exc
