import uuid

from flask import g, request


REQUEST_ID_HEADER = "X-Request-ID"


def init_request_id_middleware(app):
    """
    Initialize request ID middleware for a Flask app.
    Attaches a unique correlation ID to every request.
    """

    @app.before_request
    def before_request():
        incoming = request.headers.get(REQUEST_ID_HEADER)
        g.request_id = incoming or str(uuid.uuid4())

    @app.after_request
    def after_request(response):
        response.headers[REQUEST_ID_HEADER] = g.get("request_id", "")
        return response
