import logging

import requests

from trending_crawler.errors import FetchError

logger = logging.getLogger("fetcher")


class PageFetcher:
    """
    Fetch rendered HTML through a FlareSolverr-compatible proxy.

    The proxy is driven with a `request.get` command and answers with a JSON
    envelope whose `solution.response` holds the page source.
    """

    def __init__(self, proxy_url: str, max_timeout_ms: int = 60000):
        self.endpoint = proxy_url.rstrip("/") + "/v1"
        self.max_timeout_ms = max_timeout_ms
        self.session = None

    def open(self):
        if self.session is None:
            self.session = requests.Session()
            self.session.headers.update({"Content-Type": "application/json"})
        return self

    def close(self):
        if self.session is not None:
            self.session.close()
            self.session = None

    def __enter__(self):
        return self.open()

    def __exit__(self, *exc):
        self.close()

    def fetch(self, url: str) -> str:
        if self.session is None:
            self.open()
        payload = {"cmd": "request.get", "url": url, "maxTimeout": self.max_timeout_ms}
        # the proxy itself waits up to maxTimeout, leave it some headroom
        timeout = self.max_timeout_ms / 1000 + 30
        try:
            response = self.session.post(self.endpoint, json=payload, timeout=timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"[Fetcher] Request failed for {url}: {e}")
            raise FetchError(f"Request failed for {url}: {e}", original_error=e) from e

        if data.get("status") != "ok":
            message = data.get("message", "unknown error")
            logger.error(f"[Fetcher] Proxy error for {url}: {message}")
            raise FetchError(f"Proxy error for {url}: {message}")

        solution = data.get("solution") or {}
        return solution.get("response") or ""
