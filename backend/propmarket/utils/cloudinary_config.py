import cloudinary

from propmarket.config import cloudinary_api_key, cloudinary_api_secret, cloudinary_cloud_name


def cloudinary_is_configured() -> bool:
    """
    Returns True when required Cloudinary env vars exist.
    """
    return bool(cloudinary_cloud_name() and cloudinary_api_key() and cloudinary_api_secret())


def configure_cloudinary() -> None:
    # Re-read the environment on every call so rotated credentials take effect without a restart.
    cloudinary.config(
        cloud_name=cloudinary_cloud_name(),
        api_key=cloudinary_api_key(),
        api_secret=cloudinary_api_secret(),
        secure=True,
    )
