"""Authenticated JSON-over-HTTP transport on top of QNetworkAccessManager.

Every verb is non-blocking: results come back through ``on_success(payload)`` / ``on_error(ApiError)`` on the Qt
event loop thread, the same thread that issued the request. There is no cancellation; callers that care about
ordering have to detect superseded replies themselves.
"""

import json
from PySide6.QtCore import QByteArray, QObject, QTimer, QUrl
from PySide6.QtNetwork import QNetworkAccessManager, QNetworkReply, QNetworkRequest
from ft.common.logger import log

REQUEST_TIMEOUT_MS = 60_000
WRITE_REQUEST_TIMEOUT_MS = 45_000
RETRY_TIMES = 1
RETRY_BACKOFF_MS = 180
RETRYABLE_METHODS = {"GET", "HEAD", "OPTIONS"}

STATUS_ERROR_MESSAGES = {
    400: "The request was invalid, please check and try again.",
    401: "Your session has expired, please sign in again.",
    403: "This action is not authorized.",
    404: "Endpoint not found or service not ready.",
    408: "The request timed out, please try again later.",
    409: "Request conflict, please refresh and try again.",
    429: "Too many requests, please slow down.",
    500: "Internal server error, please try again later.",
    502: "Bad gateway, please try again later.",
    503: "Service unavailable, please try again later.",
    504: "Gateway timed out, please try again later.",
}


class ApiError(Exception):
    def __init__(self, message, status, details=None):
        super().__init__(message)
        self.status = status
        self.details = details


# Decodes a response body. Empty bodies are None; bodies that aren't JSON are kept as {"raw": text} so error
# messages can still look at them.
def parse_payload(raw):
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return {"raw": raw}

def extract_error_message(status, payload):
    if isinstance(payload, dict):
        for key in ("error", "message"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return STATUS_ERROR_MESSAGES.get(status, f"Request failed ({status})")


class QtJsonClient(QObject):

    def __init__(self, base_url, token_provider=None, timeout_ms=REQUEST_TIMEOUT_MS,
                 write_timeout_ms=WRITE_REQUEST_TIMEOUT_MS, retry_times=RETRY_TIMES, parent=None):
        super().__init__(parent)
        self.base_url = base_url.rstrip("/")
        self.token_provider = token_provider or (lambda: None)
        self.timeout_ms = timeout_ms
        self.write_timeout_ms = write_timeout_ms
        self.retry_times = retry_times
        self._manager = QNetworkAccessManager(self)

    def get(self, path, on_success, on_error):
        self._send("GET", path, None, on_success, on_error, attempt=0)

    def patch(self, path, body, on_success, on_error):
        self._send("PATCH", path, body, on_success, on_error, attempt=0)

    def _build_request(self, method, path, has_body):
        request = QNetworkRequest(QUrl(f"{self.base_url}{path}"))
        timeout = self.timeout_ms if method in RETRYABLE_METHODS else self.write_timeout_ms
        request.setTransferTimeout(timeout)
        if has_body:
            request.setHeader(QNetworkRequest.KnownHeaders.ContentTypeHeader, "application/json")
        token = self.token_provider()
        if token:
            request.setRawHeader(QByteArray(b"Authorization"), QByteArray(f"Bearer {token}".encode("utf-8")))
        return request

    def _send(self, method, path, body, on_success, on_error, attempt):
        request = self._build_request(method, path, body is not None)
        if method == "GET":
            reply = self._manager.get(request)
        else:
            data = QByteArray(json.dumps(body).encode("utf-8")) if body is not None else QByteArray()
            reply = self._manager.sendCustomRequest(request, QByteArray(method.encode("ascii")), data)
        log.debug(f"{method} {path} dispatched (attempt {attempt + 1})")
        reply.finished.connect(lambda: self._on_finished(reply, method, path, body, on_success, on_error, attempt))

    def _on_finished(self, reply, method, path, body, on_success, on_error, attempt):
        reply.deleteLater()
        status = reply.attribute(QNetworkRequest.Attribute.HttpStatusCodeAttribute)
        payload = parse_payload(bytes(reply.readAll().data()).decode("utf-8", errors="replace"))

        # No HTTP status at all means we never got a response: timeout, refused connection, DNS...
        if status is None:
            network_error = reply.error()
            timed_out = network_error in (QNetworkReply.NetworkError.OperationCanceledError,
                                          QNetworkReply.NetworkError.TimeoutError)
            if method in RETRYABLE_METHODS and attempt < self.retry_times:
                delay = RETRY_BACKOFF_MS * (attempt + 1)
                log.warning(f"{method} {path} failed with {network_error}, retrying in {delay}ms")
                QTimer.singleShot(delay, lambda: self._send(method, path, body, on_success, on_error, attempt + 1))
                return
            if timed_out:
                error = ApiError("The request timed out, please try again later.", 408)
            else:
                error = ApiError("Network connection failed, check the backend and your connection.", 503,
                                 reply.errorString())
            log.error(f"{method} {path} failed: {error} ({reply.errorString()})")
            on_error(error)
            return

        status = int(status)
        if status >= 400:
            error = ApiError(extract_error_message(status, payload), status, payload)
            log.error(f"{method} {path} returned {status}: {error}")
            on_error(error)
            return

        log.debug(f"{method} {path} returned {status}")
        on_success(payload)
