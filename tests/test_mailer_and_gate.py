"""
tests/test_mailer_and_gate.py -- SMTP sender behaviour and permission-gate
wiring.

The SMTP tests patch smtplib so nothing leaves the process. The gate tests
mount require_permission on a throwaway FastAPI app to check the two failure
modes the /settings router cannot reach: a gate with no authenticator ahead
of it, and a gate fed an identity without a usable role.
"""

from __future__ import annotations

import smtplib
from unittest.mock import MagicMock, patch

import pytest
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.testclient import TestClient

from auth.dependencies import require_permission
from auth.errors import AuthError, EmailDeliveryError
from auth.mailer import SmtpEmailSender, redact_email
from auth.models import Capability, Identity, Role, User
from conftest import make_settings


class TestSmtpEmailSender:
    def test_redact_email(self) -> None:
        assert redact_email("jane.doe@school.org") == "ja***@school.org"
        assert redact_email("garbage") == "redacted"

    def test_unconfigured_logs_instead_of_sending(self) -> None:
        sender = SmtpEmailSender.from_settings(make_settings())
        assert not sender.is_configured
        with patch("auth.mailer.smtplib.SMTP") as smtp:
            sender.send("user@x.com", "Password Reset", "Your reset token: abc")
        smtp.assert_not_called()

    def test_starttls_send(self) -> None:
        sender = SmtpEmailSender(host="smtp.test", port=587, user="u", password="p", from_email="noreply@x.com")
        with patch("auth.mailer.smtplib.SMTP") as smtp:
            server = smtp.return_value.__enter__.return_value
            sender.send("user@x.com", "Password Reset", "Your reset token: abc")

        smtp.assert_called_once_with("smtp.test", 587, timeout=30)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("u", "p")
        msg = server.send_message.call_args.args[0]
        assert msg["To"] == "user@x.com"
        assert msg["From"] == "noreply@x.com"
        assert msg["Subject"] == "Password Reset"
        assert "Your reset token: abc" in msg.get_content()

    def test_transport_failure_is_delivery_error(self) -> None:
        sender = SmtpEmailSender(host="smtp.test", from_email="noreply@x.com")
        with patch("auth.mailer.smtplib.SMTP", side_effect=smtplib.SMTPConnectError(421, b"down")):
            with pytest.raises(EmailDeliveryError):
                sender.send("user@x.com", "Password Reset", "body")


def _gate_app(attach: Identity | None) -> TestClient:
    """Build an app whose only route is behind the access_settings gate."""
    app = FastAPI()

    @app.exception_handler(AuthError)
    async def handler(request: Request, exc: AuthError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"code": exc.code})

    def fake_authenticate(request: Request) -> None:
        if attach is not None:
            request.state.identity = attach

    @app.get(
        "/guarded",
        dependencies=[Depends(fake_authenticate), Depends(require_permission(Capability.ACCESS_SETTINGS))],
    )
    def guarded() -> dict:
        return {"ok": True}

    return TestClient(app)


class TestPermissionGate:
    def _identity(self, role: object) -> Identity:
        user = User(id=1, email="a@x.com", password_hash="x", role_id=1)
        return Identity(user=user, role=role)  # type: ignore[arg-type]

    def test_missing_identity_is_wiring_error(self) -> None:
        resp = _gate_app(None).get("/guarded")
        assert resp.status_code == 500

    def test_role_without_capability_is_403(self) -> None:
        identity = self._identity(Role(id=1, name="curator", permissions={"access_curator": True}))
        resp = _gate_app(identity).get("/guarded")
        assert resp.status_code == 403
        assert resp.json() == {"code": "forbidden"}

    def test_non_role_value_is_403(self) -> None:
        resp = _gate_app(self._identity(MagicMock())).get("/guarded")
        assert resp.status_code == 403

    def test_granted(self) -> None:
        identity = self._identity(Role(id=1, name="admin", permissions={"access_settings": True}))
        resp = _gate_app(identity).get("/guarded")
        assert resp.status_code == 200
        assert resp.json() == {"ok": True}
