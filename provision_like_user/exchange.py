"""Exchange Online session used for distribution list membership changes.

Microsoft Graph refuses membership updates on mail-enabled security groups and
distribution lists, so those go through the ExchangeOnlineManagement
PowerShell module instead. Every command runs in its own PowerShell process
that connects with the application id and certificate thumbprint.
"""
from __future__ import annotations

import contextlib
import logging
import os
import subprocess
from typing import Callable, Iterator, Optional

from .config import ExchangeConfig


logger = logging.getLogger(__name__)

SUCCESS_MARKER = "SUCCESS"


class SecondarySessionError(RuntimeError):
    """Raised when an Exchange Online session cannot be established."""


class ExchangeCommandError(RuntimeError):
    """Raised when an Exchange Online command fails."""


def _quote(value: str) -> str:
    """Quote a value for a single-quoted PowerShell string literal."""

    return "'" + str(value).replace("'", "''") + "'"


class ExchangeSession:
    """Authenticated Exchange Online session backed by PowerShell."""

    def __init__(
        self,
        config: ExchangeConfig,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> None:
        self._config = config
        self._runner = runner
        self.is_open = False

    def _connect_command(self) -> str:
        return (
            f"Connect-ExchangeOnline -AppId {_quote(self._config.app_id or '')} "
            f"-CertificateThumbprint {_quote(self._config.cert_thumbprint or '')} "
            f"-Organization {_quote(self._config.organization or '')} "
            "-ShowBanner:$false -ErrorAction Stop"
        )

    def _script(self, body: str) -> str:
        return f"""Import-Module ExchangeOnlineManagement -ErrorAction Stop
$ErrorActionPreference = 'Stop'
try {{
    {self._connect_command()}
    {body}
    Write-Output '{SUCCESS_MARKER}'
}} catch {{
    Write-Error $_.Exception.Message
    exit 1
}} finally {{
    try {{ Disconnect-ExchangeOnline -Confirm:$false -ErrorAction SilentlyContinue }} catch {{}}
}}"""

    def _run(self, body: str) -> str:
        env = os.environ.copy()
        env.pop("PSModulePath", None)
        try:
            result = self._runner(
                [self._config.powershell, "-NoProfile", "-NonInteractive", "-Command", self._script(body)],
                capture_output=True,
                text=True,
                timeout=self._config.timeout,
                env=env,
            )
        except FileNotFoundError as exc:
            raise ExchangeCommandError(f"PowerShell executable not found: {exc}") from exc
        except subprocess.TimeoutExpired as exc:
            raise ExchangeCommandError("Exchange command timed out.") from exc
        except OSError as exc:
            raise ExchangeCommandError(f"Unable to start PowerShell: {exc}") from exc

        if result.returncode != 0 or SUCCESS_MARKER not in (result.stdout or ""):
            error_msg = (result.stderr or "").strip() or (result.stdout or "").strip() or "Unknown error"
            raise ExchangeCommandError(f"Exchange command failed: {error_msg}")
        return result.stdout

    def open(self) -> "ExchangeSession":
        """Authenticate once to prove the credentials work."""

        if not self._config.has_credentials:
            raise SecondarySessionError(
                "Exchange Online is not configured. Provide organization, app_id and cert_thumbprint."
            )
        try:
            self._run("Get-OrganizationConfig -ErrorAction Stop | Out-Null")
        except ExchangeCommandError as exc:
            raise SecondarySessionError(str(exc)) from exc
        self.is_open = True
        return self

    def add_distribution_group_member(self, identity: str, member: str) -> None:
        if not self.is_open:
            raise ExchangeCommandError("Exchange Online session is not open.")
        self._run(
            f"$group = Get-DistributionGroup -Identity {_quote(identity)} -ErrorAction Stop\n"
            f"    Add-DistributionGroupMember -Identity $group.PrimarySmtpAddress "
            f"-Member {_quote(member)} -BypassSecurityGroupManagerCheck -ErrorAction Stop"
        )

    def close(self) -> None:
        # Each command disconnects on its own; closing only retires the handle.
        self.is_open = False


@contextlib.contextmanager
def exchange_session(
    config: ExchangeConfig,
    factory: Callable[[ExchangeConfig], ExchangeSession] = ExchangeSession,
) -> Iterator[Optional[ExchangeSession]]:
    """Yield an open session, or ``None`` when Exchange Online is unavailable."""

    session: Optional[ExchangeSession] = None
    try:
        session = factory(config).open()
    except SecondarySessionError as exc:
        logger.warning("Exchange Online session unavailable; mail-enabled groups will be skipped: %s", exc)
        session = None

    try:
        yield session
    finally:
        if session is not None:
            try:
                session.close()
            except Exception as exc:  # release errors never affect the outcome
                logger.debug("Ignoring Exchange Online release failure: %s", exc)


__all__ = [
    "ExchangeCommandError",
    "ExchangeSession",
    "SecondarySessionError",
    "exchange_session",
]
