from __future__ import annotations

import json
import logging
import smtplib
from email.message import EmailMessage
from typing import Optional

import httpx

from scriptgate.core.config import Settings
from scriptgate.core.webhook import post_webhook

logger = logging.getLogger("scriptgate.notify")


class Notifier:
    """
    Notifiche best-effort:
      - Log (sempre)
      - Email SMTP (se configurato): al destinatario indicato o all'admin
      - Webhook HTTP POST firmato HMAC (se configurato)

    Nessun canale può far fallire la richiesta: gli errori vengono loggati.
    """
    def __init__(self, settings: Settings, transport: Optional[httpx.BaseTransport] = None):
        self.smtp_host = settings.SMTP_HOST
        self.smtp_port = settings.SMTP_PORT
        self.smtp_user = settings.SMTP_USER
        self.smtp_pass = settings.SMTP_PASS
        self.smtp_from = settings.SMTP_FROM
        self.smtp_tls = settings.SMTP_TLS
        self.admin_email = settings.ADMIN_NOTIFY_EMAIL

        self.webhook_url = settings.NOTIFY_WEBHOOK_URL
        self.webhook_secret = settings.NOTIFY_WEBHOOK_SECRET
        self.webhook_timeout = settings.NOTIFY_WEBHOOK_TIMEOUT_SECONDS
        self.transport = transport

    # ---------------------- channels ----------------------

    def _log(self, title: str, payload: dict):
        logger.info("[NOTIFY] %s :: %s", title, json.dumps(payload, ensure_ascii=False, default=str))

    def _email(self, subject: str, payload: dict, recipient: Optional[str]):
        to = recipient or self.admin_email
        if not (self.smtp_host and self.smtp_from and to):
            return False
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.smtp_from
        msg["To"] = to
        msg.set_content(json.dumps(payload, indent=2, ensure_ascii=False, default=str))

        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=10) as s:
            if self.smtp_tls:
                s.starttls()
            if self.smtp_user and self.smtp_pass:
                s.login(self.smtp_user, self.smtp_pass)
            s.send_message(msg)
        return True

    def _webhook(self, event_type: str, payload: dict):
        if not self.webhook_url:
            return False
        ok, err = post_webhook(
            self.webhook_url,
            event_type,
            payload,
            secret=self.webhook_secret,
            timeout_seconds=self.webhook_timeout,
            transport=self.transport,
        )
        if not ok:
            logger.warning("[NOTIFY] webhook %s fallito: %s", event_type, err)
        return ok

    # ---------------------- public API ----------------------

    def notify(self, event_type: str, title: str, payload: dict, recipient: Optional[str] = None) -> dict:
        """Invia su tutti i canali configurati."""
        sent = {"log": False, "email": False, "webhook": False}
        self._log(title, payload)
        sent["log"] = True
        try:
            sent["email"] = bool(self._email(f"[ScriptGate] {title}", payload, recipient))
        except Exception as e:
            logger.warning("[NOTIFY] email %s fallita: %s", event_type, e)
        try:
            sent["webhook"] = bool(self._webhook(event_type, {"title": title, "payload": payload}))
        except Exception as e:
            logger.warning("[NOTIFY] webhook %s fallito: %s", event_type, e)
        return sent
