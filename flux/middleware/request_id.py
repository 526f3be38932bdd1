"""
Request ID middleware for request tracing and logging
"""
import logging
import re
import uuid

from flask import has_request_context, request

REQUEST_ID_HEADER = 'X-Request-ID'
# Caller-supplied ids end up in every log line; keep them short and printable
_VALID_REQUEST_ID = re.compile(r'^[A-Za-z0-9._-]{1,64}$')


class RequestIdMiddleware:
    """
    WSGI middleware giving every request an id, reusing the caller's
    X-Request-ID when it is well formed
    """

    def __init__(self, app):
        self.app = app

    def __call__(self, environ, start_response):
        incoming = environ.get('HTTP_X_REQUEST_ID', '')
        request_id = incoming if _VALID_REQUEST_ID.match(incoming) else uuid.uuid4().hex
        environ['request_id'] = request_id

        def start_response_with_id(status, headers, exc_info=None):
            headers.append((REQUEST_ID_HEADER, request_id))
            return start_response(status, headers, exc_info)

        return self.app(environ, start_response_with_id)


class RequestIdFilter(logging.Filter):
    """Stamp every log record with the current request id ("-" outside requests)"""

    def filter(self, record):
        request_id = '-'
        if has_request_context():
            request_id = request.environ.get('request_id', '-')
        record.request_id = request_id
        return True


LOG_FORMAT = '%(asctime)s %(levelname)s [%(request_id)s] %(name)s: %(message)s'


def configure_logging(app):
    """Attach a single request-aware handler to the ``flux`` logger tree"""
    logger = logging.getLogger('flux')
    logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))

    if not any(getattr(h, '_flux_handler', False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler._flux_handler = True
        handler.addFilter(RequestIdFilter())
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
