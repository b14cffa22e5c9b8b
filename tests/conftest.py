import os
import sys
from urllib.parse import urlsplit

import pytest
from fastapi.testclient import TestClient

# Ensure the package is importable without installation
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from stp.errors import TransportError, TransportFailure
from stp.models import TransactionDraft
from stp.provider import ProviderProtocol
from stp.server import create_provider_app, create_vendor_app
from stp.signing import KeyPair
from stp.transport import StpTransport
from stp.util import cut_id_from_url
from stp.vendor import VendorProtocol

VENDOR_HOST = "vendor.test:3000"
PROVIDER_HOST = "provider.test:8000"


class InProcessTransport(StpTransport):
    """Routes stp:// requests to FastAPI apps by host instead of the network."""

    def __init__(self):
        super().__init__(timeout=5)
        self.clients = {}
        self.sent = []

    def mount(self, host, app):
        self.clients[host] = TestClient(app)

    def _send(self, http_url, body):
        parts = urlsplit(http_url)
        client = self.clients.get(parts.netloc)
        if client is None:
            raise TransportError(TransportFailure.CONNECTION_FAILED, f"no route to {parts.netloc}")
        self.sent.append((http_url, body))
        r = client.post(parts.path, json=body)
        if not 200 <= r.status_code < 300:
            return r.status_code, r.text, None
        return r.status_code, r.text, r.json()


class Parties:
    """Both parties wired together in one process."""

    def __init__(self, auto_accept_modify=True):
        self.vendor_keys = KeyPair.generate("stp-vendor-test")
        self.provider_keys = KeyPair.generate("stp-provider-test")
        self.transport = InProcessTransport()
        self.vendor = VendorProtocol(
            self.vendor_keys,
            bank_public_key=self.provider_keys.public_key,
            host=VENDOR_HOST,
            transport=self.transport,
            pin_wait_timeout=0.2,
        )
        self.provider = ProviderProtocol(
            self.provider_keys,
            host=PROVIDER_HOST,
            transport=self.transport,
            bic="STPEXPROV",
            bank_name="STP_Example_Provider",
            trusted_vendor_key=self.vendor_keys.public_key,
            auto_accept_modify=auto_accept_modify,
        )
        self.vendor_app = create_vendor_app(self.vendor)
        self.provider_app = create_provider_app(self.provider)
        self.transport.mount(VENDOR_HOST, self.vendor_app)
        self.transport.mount(PROVIDER_HOST, self.provider_app)
        self.vendor_client = TestClient(self.vendor_app)
        self.provider_client = TestClient(self.provider_app)

    def start(self, amount="1", currency="USD", recurring="one_time"):
        """Draft a transaction on the vendor and start it from the provider."""
        url = self.vendor.create_request(TransactionDraft(amount=amount, currency=currency, recurring=recurring))
        started = self.provider.start(url)
        assert started.ok(), started.to_dict()
        return url, started

    def issue(self, amount="1", currency="USD", recurring="one_time"):
        """Run a full negotiation and return the transaction id."""
        url, started = self.start(amount, currency, recurring)
        pin = self.vendor.wait_for_pin(cut_id_from_url(url))
        result = self.provider.confirm(started.transaction_id, True, pin)
        assert result.ok(), result.to_dict()
        return started.transaction_id


@pytest.fixture
def parties():
    return Parties()


@pytest.fixture
def manual_parties():
    """Provider that queues modifications for operator review."""
    return Parties(auto_accept_modify=False)
