from flask import current_app, request

from fleetorg.errors import ValidationError


def read_limit():
    return current_app.config["READ_RATE_LIMIT"]


def write_limit():
    return current_app.config["WRITE_RATE_LIMIT"]


def json_body() -> dict:
    """Request JSON as a dict; an empty body reads as ``{}``."""
    data = request.get_json(silent=True)
    if data is None:
        if request.get_data(cache=True):
            raise ValidationError("Request body must be valid JSON")
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data
