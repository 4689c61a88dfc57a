from fastapi import Request
import logging
import time

logger = logging.getLogger(__name__)


class RequestLoggingMiddleware:
    """
    Middleware qui journalise chaque requête API avec son statut et sa durée
    """

    ignore_paths = ("/docs", "/openapi.json", "/favicon.ico", "/health")

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive)
        start_time = time.time()
        status_code = 500

        async def send_wrapper(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            self._log_request(request, status_code, time.time() - start_time)

    def _log_request(self, request: Request, status_code: int, process_time: float):
        if request.url.path.startswith(self.ignore_paths):
            return

        level = logging.WARNING if status_code >= 400 else logging.INFO
        logger.log(
            level,
            "%s %s -> %s (%.1f ms)",
            request.method, request.url.path, status_code, process_time * 1000
        )
