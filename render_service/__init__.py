"""
Render Service - HTML to PDF rendering on a shared Chromium instance.

Converts HTML files or inline markup to paginated PDFs using
Playwright/Chromium. One browser process is shared by all requests; each
request renders in its own isolated browser context.
"""

__version__ = "1.0.0"
