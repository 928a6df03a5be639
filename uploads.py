import logging

import cloudinary
import cloudinary.uploader
from cloudinary.exceptions import Error as CloudinaryError

logger = logging.getLogger(__name__)

PRODUCT_FOLDER = 'products'


class UploadError(Exception):
    pass


def configure_cloudinary(config):
    if config.get('CLOUDINARY_URL'):
        cloudinary.config(cloudinary_url=config['CLOUDINARY_URL'], secure=True)


def upload_image(file, folder=PRODUCT_FOLDER):
    """Upload a werkzeug FileStorage and return its public https URL"""
    try:
        result = cloudinary.uploader.upload(file.stream, resource_type='image', folder=folder)
    except (CloudinaryError, OSError) as e:
        logger.error("Error uploading image: %s", e)
        raise UploadError(str(e)) from e

    url = result.get('secure_url')
    if not url:
        logger.error("Error uploading image: no URL in upload response")
        raise UploadError('Upload response did not include a URL')
    logger.info("Image uploaded to %s", url)
    return url
