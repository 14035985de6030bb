import io, uuid
from minio import Minio
from smartshop.core.config import settings

ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/png", "image/webp", "image/gif"}

def _host() -> str:
    return settings.S3_ENDPOINT.replace('http://', '').replace('https://', '')

def _client():
    return Minio(_host(), access_key=settings.S3_ACCESS_KEY, secret_key=settings.S3_SECRET_KEY, secure=settings.S3_SECURE)

def ensure_bucket(c: Minio):
    if not c.bucket_exists(settings.S3_BUCKET):
        c.make_bucket(settings.S3_BUCKET)

def file_extension(filename: str | None) -> str:
    if not filename or '.' not in filename:
        return ''
    return '.' + filename.rsplit('.', 1)[-1].lower()

def public_url(key: str) -> str:
    scheme = 'https' if settings.S3_SECURE else 'http'
    return f"{scheme}://{_host()}/{settings.S3_BUCKET}/{key}"

def upload_bytes(data: bytes, content_type: str, ext: str = '', prefix: str = 'products'):
    """Store ``data`` under ``<prefix>/<random>.<ext>`` and return ``(key, url)``."""
    c = _client()
    ensure_bucket(c)
    key = f"{prefix}/{uuid.uuid4().hex}{ext}"
    c.put_object(settings.S3_BUCKET, key, io.BytesIO(data), length=len(data), content_type=content_type)
    return key, public_url(key)
