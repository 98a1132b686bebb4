import os
import re
import time
import random
from collections import namedtuple

from errors import ValidationError

ALLOWED_TYPES = re.compile(r'jpeg|jpg|png|gif|webp')

StoredUpload = namedtuple('StoredUpload', ['url', 'original_name', 'size', 'path'])


def is_allowed_image(filename, mimetype):
    extension = os.path.splitext(filename or '')[1].lower()
    return bool(ALLOWED_TYPES.search(extension)) and bool(ALLOWED_TYPES.search(mimetype or ''))


def unique_filename(fieldname, original_name):
    suffix = f"{int(time.time() * 1000)}-{random.randint(0, 10**9)}"
    return f"{fieldname}-{suffix}{os.path.splitext(original_name)[1]}"


def save_image(file, upload_folder, fieldname='image'):
    """Store an uploaded image under a generated name and return its reference"""
    if file is None or not file.filename:
        raise ValidationError('Image required', 'Must upload an image file')
    if not is_allowed_image(file.filename, file.mimetype):
        raise ValidationError('Invalid file', 'Only images are allowed (jpeg, jpg, png, gif, webp)')

    os.makedirs(upload_folder, exist_ok=True)
    filename = unique_filename(fieldname, file.filename)
    path = os.path.join(upload_folder, filename)
    file.save(path)
    return StoredUpload(
        url=f"/uploads/{filename}",
        original_name=file.filename,
        size=os.path.getsize(path),
        path=path
    )
