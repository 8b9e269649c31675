"""
Offline Worker - Fallback Generator

Synthesizes a response when neither the cache nor the network can satisfy a
request. Generation never fails: any unexpected error still yields the
generic 404.
"""
import html

import structlog

from ..shared.caching.models import Request, Response
from .classifier import Classification, is_image_request

logger = structlog.get_logger(__name__)

OFFLINE_MARKER = 'data-offline-mode="true"'

OFFLINE_PAGE = """<!DOCTYPE html>
<html lang="en" {marker}>
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Offline</title>
    <style>
        body {{
            font-family: -apple-system, BlinkMacSystemFont, sans-serif;
            margin: 0;
            display: flex;
            align-items: center;
            justify-content: center;
            min-height: 100vh;
            background: #000;
            color: #fff;
            text-align: center;
        }}
        .offline-container {{ max-width: 400px; padding: 40px 20px; }}
        .offline-title {{ font-size: 24px; font-weight: 600; margin-bottom: 10px; }}
        .offline-description {{ font-size: 16px; opacity: 0.7; margin-bottom: 30px; }}
        .retry-button {{
            background: #0A84FF;
            color: #fff;
            border: none;
            padding: 12px 24px;
            border-radius: 12px;
            font-size: 16px;
            cursor: pointer;
        }}
    </style>
</head>
<body>
    <div class="offline-container">
        <h1 class="offline-title">You are offline</h1>
        <p class="offline-description">{path} is not available right now. Check your connection and try again.</p>
        <button class="retry-button" onclick="window.location.reload()">Retry</button>
    </div>
</body>
</html>
"""

PLACEHOLDER_IMAGE = (
    '<svg xmlns="http://www.w3.org/2000/svg" width="200" height="200" viewBox="0 0 200 200">'
    '<rect width="200" height="200" fill="#f0f0f0"/>'
    '<text x="100" y="100" text-anchor="middle" font-family="system-ui" font-size="14" fill="#666">'
    'Image Offline</text></svg>'
)


class FallbackGenerator:
    """Builds synthetic offline responses per classification."""

    def __init__(self):
        self.stats = {
            'documents': 0,
            'images': 0,
            'not_found': 0
        }

    def generate(self, request: Request, classification: Classification) -> Response:
        try:
            if classification == Classification.DOCUMENT:
                self.stats['documents'] += 1
                return self.offline_page(request)
            if is_image_request(request):
                self.stats['images'] += 1
                return self.placeholder_image()
        except Exception as e:
            logger.error("Fallback generation failed", url=getattr(request, 'url', None), error=str(e))
        self.stats['not_found'] += 1
        return self.not_found()

    def offline_page(self, request: Request) -> Response:
        body = OFFLINE_PAGE.format(marker=OFFLINE_MARKER, path=html.escape(request.path))
        return Response(
            status=200,
            status_text="OK",
            headers={"Content-Type": "text/html; charset=utf-8"},
            body=body.encode("utf-8"),
            url=request.url,
        )

    def placeholder_image(self) -> Response:
        return Response(
            status=200,
            status_text="OK",
            headers={"Content-Type": "image/svg+xml"},
            body=PLACEHOLDER_IMAGE.encode("utf-8"),
        )

    def not_found(self) -> Response:
        return Response(
            status=404,
            status_text="Not Found",
            headers={"Content-Type": "text/plain; charset=utf-8"},
            body=b"Not available offline",
        )
