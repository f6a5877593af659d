import json
import logging

logger = logging.getLogger(__name__)

SENSITIVE_FIELDS = ("password", "razorpay_signature")


def _redact(body: str) -> str:
    try:
        payload = json.loads(body)
    except ValueError:
        return body
    if isinstance(payload, dict):
        for field in SENSITIVE_FIELDS:
            if field in payload:
                payload[field] = "***"
    return json.dumps(payload)


class RequestResponseLoggingMiddleware:
    """
    Middleware that logs each API request method, path and body,
    and the corresponding response status and content.

    Only /api/ traffic is logged. Passwords and gateway signatures are
    masked before the body is written out.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        if not request.path.startswith("/api/"):
            return self.get_response(request)

        request_body = ""
        if request.method in ("POST", "PUT", "PATCH"):
            try:
                if request.body:
                    request_body = _redact(request.body.decode("utf-8"))
            except UnicodeDecodeError:
                request_body = "<Could not decode body>"

        logger.info(
            "API Request: %s %s Body: %s",
            request.method,
            request.get_full_path(),
            request_body,
        )

        response = self.get_response(request)

        response_content = ""
        response_type = response.get("Content-Type", "")
        if response_type.startswith("application/json") and hasattr(
            response, "content"
        ):
            response_content = response.content.decode("utf-8", errors="replace")
        else:
            response_content = f"<Content-Type: {response_type}>"

        logger.info(
            "API Response: %s %s Status: %s Content: %s",
            request.method,
            request.get_full_path(),
            response.status_code,
            response_content,
        )

        return response
