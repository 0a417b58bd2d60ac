import logging
from flask import Blueprint
from werkzeug.exceptions import HTTPException
from petshop.exceptions import CommerceError, TransientStorageError
from petshop.utils.responses import error

errors_bp = Blueprint("errors_bp", __name__)


@errors_bp.app_errorhandler(CommerceError)
def handle_commerce_error(e):
    if isinstance(e, TransientStorageError):
        logging.warning("Storage failure: %s", e.message)
    return error(e.message, status=e.status)


@errors_bp.app_errorhandler(HTTPException)
def handle_http_exception(e):
    msg = e.description or getattr(e, "name", "HTTP Error")
    return error(msg, status=e.code, code=e.code)


@errors_bp.app_errorhandler(Exception)
def handle_unexpected_exception(e):
    logging.exception("Unhandled exception")
    return error(
        "An unexpected error occurred. Please try again later.",
        status=500,
        code=500,
    )
