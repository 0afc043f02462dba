# Overview: Flask routes for image upload and serving.

from flask import Blueprint, abort, jsonify, request, send_from_directory

from ..errors import ValidationError
from ..services import image_store
from ..decorators import require_auth, require_any_permission, handle_domain_errors
from ..permissions import CREATE, EDIT

images_bp = Blueprint("images", __name__)


@images_bp.post("/api/images")
@require_auth
@require_any_permission(CREATE, EDIT)
@handle_domain_errors("upload image")
def upload_image():
    """
    Upload a bike photo.

    Accepts multipart form data (field "file") or a raw image body with an
    image/* Content-Type. Returns {"image_url": ...} to store on a record.
    """
    upload = request.files.get("file")
    if upload is not None:
        data = upload.read()
        content_type = upload.mimetype
    elif request.mimetype and request.mimetype.startswith("image/"):
        data = request.get_data()
        content_type = request.mimetype
    else:
        raise ValidationError("Send the image as multipart field 'file' or as an image/* body")

    return jsonify({"image_url": image_store.upload(data, content_type)}), 201


@images_bp.get("/images/<path:name>")
def serve_image(name: str):
    if image_store.name_from_url(image_store.public_url_for(name)) is None:
        abort(404)
    return send_from_directory(image_store.upload_dir(), name)
