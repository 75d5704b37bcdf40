# Overview: Maps service-layer errors to JSON responses.

from flask import jsonify

from ..validation import ConflictError, LedgerIntegrityError, NotFoundError, ValidationError


def error_response(exc: Exception):
    if isinstance(exc, ValidationError):
        return jsonify({"error": str(exc), "details": exc.details}), 400
    if isinstance(exc, NotFoundError):
        return jsonify({"error": str(exc)}), 404
    if isinstance(exc, ConflictError):
        return jsonify({"error": str(exc), "details": exc.details}), 409
    if isinstance(exc, LedgerIntegrityError):
        return jsonify({"error": "Internal server error"}), 500
    raise exc


SERVICE_ERRORS = (ValidationError, NotFoundError, ConflictError, LedgerIntegrityError)
