"""
HTTP binding of the STP parties.

Thin FastAPI apps: protocol endpoints under ``/api/stp`` and the
operator endpoints used to drive a party. Message bodies are validated by
the pydantic models before protocol code runs; malformed bodies and
unknown exchange ids answer 400.
"""

import logging
from typing import Any, Dict

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse

from . import config
from .errors import ExchangeResult, MalformedMessage
from .models import (
    AutoAcceptSetting,
    Confirm,
    Hello,
    ModificationDecision,
    ModifyRequest,
    Revise,
    RevisionVerb,
    StartRequest,
    TransactionDraft,
    UserDecision,
)
from .provider import ProviderProtocol
from .vendor import VendorProtocol

logger = logging.getLogger(__name__)


def _install_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(MalformedMessage)
    async def _malformed(request: Request, exc: MalformedMessage):
        logger.warning("Bad request on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def _invalid_body(request: Request, exc: RequestValidationError):
        logger.warning("Invalid body on %s: %d error(s)", request.url.path, len(exc.errors()))
        return JSONResponse(status_code=400, content={"detail": "malformed message"})


def _result(result: ExchangeResult) -> Dict[str, Any]:
    body = result.to_dict()
    if result.ok() and isinstance(result.payload, dict):
        body.update(result.payload)
    return body


def create_vendor_app(vendor: VendorProtocol) -> FastAPI:
    app = FastAPI(title="STP Vendor", docs_url=None if config.is_production() else "/docs")
    _install_error_handlers(app)

    # ---------------- protocol ----------------

    @app.post("/api/stp/request/{uuid}")
    def hello(uuid: str, msg: Hello):
        return vendor.handle_hello(uuid, msg)

    @app.get("/api/stp/request/{uuid}/pin", response_class=PlainTextResponse)
    def request_pin(uuid: str):
        pin = vendor.wait_for_pin(uuid)
        if pin is None:
            raise HTTPException(504, "PIN_TIMEOUT")
        return str(pin)

    @app.post("/api/stp/response/{uuid}")
    def response(uuid: str, msg: Confirm):
        return vendor.handle_confirm(uuid, msg)

    @app.post("/api/stp/revision/{uuid}")
    def revision(uuid: str, msg: Revise):
        return vendor.handle_revision(uuid, msg)

    # ---------------- operator ----------------

    @app.post("/gen_url")
    def gen_url(draft: TransactionDraft):
        url = vendor.create_request(draft)
        return {"url": url}

    @app.get("/tokens")
    def tokens():
        return vendor.list_tokens()

    @app.get("/token/{transaction_id}")
    def token(transaction_id: str):
        t = vendor.get_token(transaction_id)
        if t is None:
            raise HTTPException(404, "TOKEN_NOT_FOUND")
        return t.to_dict()

    @app.post("/revoke/{transaction_id}")
    def revoke(transaction_id: str):
        return _result(vendor.revise(transaction_id, RevisionVerb.REVOKE))

    @app.post("/refresh/{transaction_id}")
    def refresh(transaction_id: str):
        return _result(vendor.revise(transaction_id, RevisionVerb.REFRESH))

    @app.post("/modify/{transaction_id}")
    def modify(transaction_id: str, req: ModifyRequest):
        return _result(vendor.revise(transaction_id, RevisionVerb.MODIFY, req.amount, req.currency))

    return app


def create_provider_app(provider: ProviderProtocol) -> FastAPI:
    app = FastAPI(title="STP Provider", docs_url=None if config.is_production() else "/docs")
    _install_error_handlers(app)

    # ---------------- protocol ----------------

    @app.post("/api/stp/remediation/{uuid}")
    def remediation(uuid: str, msg: Revise):
        return provider.handle_remediation(uuid, msg)

    # ---------------- operator ----------------

    @app.post("/start")
    def start(req: StartRequest):
        result = provider.start(req.url)
        body = result.to_dict()
        if result.ok():
            body["offer"] = result.payload
        return body

    @app.post("/verify")
    def verify(decision: UserDecision):
        return _result(provider.confirm(decision.t_id, decision.decision, decision.pin))

    @app.post("/set_accept_modify")
    def set_accept_modify(setting: AutoAcceptSetting):
        provider.set_auto_accept_modify(setting.value)
        return {"success": True, "auto_accept_modify": provider.auto_accept_modify}

    @app.get("/tokens")
    def tokens():
        return provider.list_tokens()

    @app.get("/token/{transaction_id}")
    def token(transaction_id: str):
        t = provider.get_token(transaction_id)
        if t is None:
            raise HTTPException(404, "TOKEN_NOT_FOUND")
        return t.to_dict()

    @app.post("/revoke/{transaction_id}")
    def revoke(transaction_id: str):
        return _result(provider.revise(transaction_id, RevisionVerb.REVOKE))

    @app.get("/ongoing_modification")
    def ongoing_modification():
        pending = provider.latest_pending_modification()
        return pending.to_dict() if pending else {}

    @app.post("/handle_modification/{transaction_id}")
    def handle_modification(transaction_id: str, decision: ModificationDecision):
        return _result(provider.decide_modification(transaction_id, decision.accept))

    return app
