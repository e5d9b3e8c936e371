import boto3
from botocore.exceptions import ClientError
import os
import logging
import uuid

logger = logging.getLogger(__name__)

S3_CLIENT = None
AWS_REGION = os.getenv('AWS_DEFAULT_REGION', 'ap-southeast-3')
S3_BUCKET_NAME = os.getenv('S3_BUCKET_NAME') # Proof uploads are disabled when unset

ALLOWED_IMAGE_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "webp"}


def is_configured() -> bool:
    return bool(S3_BUCKET_NAME)


def get_s3_client():
    """Lazily created boto3 client, shared by every request."""
    global S3_CLIENT
    if S3_CLIENT is None:
        S3_CLIENT = boto3.client('s3', region_name=AWS_REGION)
        logger.info(f"S3 client created for region {AWS_REGION}")
    return S3_CLIENT


def image_extension(filename: str) -> str:
    """Lower-cased extension of an uploaded proof image; raises ValueError for non-images."""
    extension = filename.rsplit('.', 1)[-1].lower() if '.' in filename else ''
    if extension not in ALLOWED_IMAGE_EXTENSIONS:
        raise ValueError("Hanya file gambar yang diizinkan!")
    return extension


def _bucket_prefix() -> str:
    return f"s3://{S3_BUCKET_NAME}/"


def _presign(operation: str, params: dict, expires_in: int) -> str:
    return get_s3_client().generate_presigned_url(
        operation,
        Params={'Bucket': S3_BUCKET_NAME, **params},
        ExpiresIn=expires_in,
    )


def generate_presigned_upload_url(payment_id: int, filename: str, expires_in: int = 3600) -> dict:
    """
    Pre-signed PUT URL for a proof-of-payment image.

    Objects are keyed ``payments/<payment_id>/proof-<random>.<ext>``. The
    returned ``s3_path`` is what gets stored on the payment as ``proof_image``.
    """
    extension = image_extension(filename)
    key = f"payments/{payment_id}/proof-{uuid.uuid4().hex}.{extension}"

    try:
        url = _presign('put_object', {'Key': key, 'ContentType': f'image/{extension}'}, expires_in)
    except ClientError as e:
        logger.exception(f"Could not presign upload of {key}")
        raise RuntimeError(f"Could not generate S3 upload URL: {e}")

    logger.info(f"Presigned upload URL issued for {key}")
    return {"upload_url": url, "s3_path": f"{_bucket_prefix()}{key}"}


def generate_presigned_download_url(s3_path: str, expires_in: int = 3600) -> str:
    """Pre-signed GET URL for a stored proof image given its ``s3://bucket/key`` path."""
    prefix = _bucket_prefix()
    if not s3_path.startswith(prefix):
        raise ValueError(f"Invalid S3 path format. Must start with '{prefix}'")
    key = s3_path[len(prefix):]

    try:
        url = _presign('get_object', {'Key': key}, expires_in)
    except ClientError as e:
        logger.exception(f"Could not presign download of {key}")
        if e.response['Error']['Code'] == 'NoSuchKey':
            raise FileNotFoundError(f"File not found in S3 at path: {s3_path}")
        raise RuntimeError(f"Could not generate S3 download URL: {e}")

    logger.info(f"Presigned download URL issued for {key}")
    return url
