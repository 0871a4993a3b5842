"""Outbound mail transports."""
from __future__ import annotations

import smtplib
import socket
from email.mime.text import MIMEText
from typing import Optional

from loadwatch.lib import commands
from loadwatch.lib.config_loader import MonitorConfig
from loadwatch.lib.errors import MailDeliveryError


class CommandMailer:
    """Pipe the body to ``mail -s <subject> <recipient>``."""

    def __init__(self, recipient: str, command: str = "mail", timeout: int = 30) -> None:
        self.recipient = recipient
        self.command = command
        self.timeout = timeout

    def send(self, subject: str, body: str) -> None:
        result = commands.run(
            [self.command, "-s", subject, self.recipient],
            timeout=self.timeout,
            input_text=body,
        )
        if result.status == commands.FAILED:
            raise MailDeliveryError(f"{self.command}: {result.error or 'failed'}")


class SmtpMailer:
    def __init__(
        self,
        recipient: str,
        host: str,
        port: int = 25,
        sender: str = "",
        user: str = "",
        password: str = "",
        starttls: bool = False,
        timeout: int = 30,
    ) -> None:
        self.recipient = recipient
        self.host = host
        self.port = port
        self.sender = sender or f"loadwatch@{socket.getfqdn()}"
        self.user = user
        self.password = password
        self.starttls = starttls
        self.timeout = timeout

    def build_message(self, subject: str, body: str) -> MIMEText:
        msg = MIMEText(body, "plain", "utf-8")
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = self.recipient
        return msg

    def send(self, subject: str, body: str) -> None:
        msg = self.build_message(subject, body)
        try:
            if self.port == 465:
                server: smtplib.SMTP = smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout)
            else:
                server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
            with server:
                if self.starttls:
                    server.starttls()
                if self.user:
                    server.login(self.user, self.password)
                server.sendmail(self.sender, [self.recipient], msg.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            raise MailDeliveryError(f"smtp {self.host}:{self.port}: {exc}") from exc


class PrintMailer:
    """Write messages to stdout instead of sending them (``--dry-run``)."""

    def __init__(self, recipient: str, stream: Optional[object] = None) -> None:
        self.recipient = recipient
        self.stream = stream

    def send(self, subject: str, body: str) -> None:
        header = f"To: {self.recipient}\nSubject: {subject}\n"
        print(header + "\n" + body + "\n" + "=" * 50, file=self.stream)  # type: ignore[arg-type]


def build_mailer(config: MonitorConfig, dry_run: bool = False):
    if dry_run:
        return PrintMailer(config.email)
    if config.mail_transport == "smtp":
        return SmtpMailer(
            config.email,
            config.smtp_host,
            port=config.smtp_port,
            sender=config.mail_from,
            user=config.smtp_user,
            password=config.smtp_password,
            starttls=config.smtp_starttls,
        )
    return CommandMailer(config.email, command=config.mail_command)
