"""
Outbound transport.

STP URLs use the ``stp://`` scheme, which maps onto plain HTTP. Every
message is a JSON POST. There are no retries: a timeout, connection
failure or non-2xx status raises ``TransportError`` and the caller
decides what to do.
"""

import logging
from typing import Any, Dict

import requests

from . import config
from .errors import TransportError, TransportFailure
from .util import stp_to_http

logger = logging.getLogger(__name__)


class StpTransport:
    """JSON-over-HTTP POST client for counterparty endpoints."""

    def __init__(self, timeout: float = None, session: requests.Session = None):
        self.timeout = config.HTTP_TIMEOUT if timeout is None else timeout
        self.session = session or requests.Session()

    def post(self, url: str, body: Dict[str, Any]) -> Any:
        """
        POST ``body`` to an ``stp://`` (or http) URL and return the decoded JSON reply.

        Raises:
            TransportError: on timeout, connection failure, non-2xx status
                or a reply that is not JSON
        """
        http_url = stp_to_http(url)
        logger.debug("POST %s", http_url)
        status, text, payload = self._send(http_url, body)
        if not 200 <= status < 300:
            raise TransportError(status, text[:500] if text else "")
        return payload

    def _send(self, http_url: str, body: Dict[str, Any]):
        """Perform the request; returns ``(status, text, decoded_json)``."""
        try:
            r = self.session.post(http_url, json=body, timeout=self.timeout)
        except requests.Timeout as e:
            raise TransportError(TransportFailure.TIMEOUT, str(e))
        except requests.RequestException as e:
            raise TransportError(TransportFailure.CONNECTION_FAILED, str(e))
        if not 200 <= r.status_code < 300:
            return r.status_code, r.text, None
        try:
            return r.status_code, r.text, r.json()
        except ValueError:
            raise TransportError(r.status_code, "reply is not valid JSON")
