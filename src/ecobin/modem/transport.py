# src/ecobin/modem/transport.py

from __future__ import annotations

"""
ModemTransport: one session over one serial port.

    closed -> opening -> open -> (initialized) -> ready
                 any failed exchange -> failed (diagnosis recorded)

Startup is a straight sequence of blocking steps (open, initialize, configure
SMSC), each bounded by a timeout. Nothing here retries, except one PDU-mode send
after a text-mode failure of a multi-segment message.

Not thread-safe on purpose: ModemDispatcher is the only caller.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import StrEnum

from ..core.ports import AtPort, AtResponse
from ..errors import (
    ModemError,
    ModemInitError,
    ModemNotReadyError,
    ModemOpenError,
    ModemSendError,
    ModemTimeoutError,
    SmscMismatchError,
)
from ..notify.notify_models import SmsMode
from . import gsm7
from .carrier import decode_error, describe_registration

logger = logging.getLogger(__name__)

_CSCA_RE = re.compile(r'\+CSCA:\s*"([^"]*)"')
_CSQ_RE = re.compile(r"\+CSQ:\s*(\d+)\s*,")
_CREG_RE = re.compile(r"\+CREG:\s*(?:\d+\s*,\s*)?(\d+)")
_CMGS_RE = re.compile(r"\+CMGS:\s*(\d+)")


class SessionState(StrEnum):
    CLOSED = "closed"
    OPENING = "opening"
    OPEN = "open"
    READY = "ready"
    FAILED = "failed"


@dataclass(slots=True)
class ModemSession:
    state: SessionState = SessionState.CLOSED
    port: str | None = None
    baud_rate: int | None = None
    initialized: bool = False
    configured_smsc: str | None = None
    diagnosis: str | None = None


@dataclass(slots=True, frozen=True)
class SendResult:
    mode: SmsMode
    segments: int
    message_refs: tuple[str, ...] = ()


@dataclass(slots=True, frozen=True)
class ModemStatus:
    state: SessionState
    port: str | None
    sim_status: str = "unknown"
    signal_strength: int | None = None
    registration: str = "unknown"
    smsc: str | None = None
    diagnosis: str | None = None
    warnings: tuple[str, ...] = field(default_factory=tuple)

    @property
    def health(self) -> str:
        if self.state is not SessionState.READY or self.sim_status != "ready":
            return "unhealthy"
        if self.registration not in ("home", "roaming"):
            return "unhealthy"
        if self.signal_strength is None or self.signal_strength < 5 or self.signal_strength == 99:
            return "degraded"
        return "healthy"


def normalize_smsc(number: str | None) -> str:
    return "".join(ch for ch in (number or "") if ch.isdigit())


class ModemTransport:
    def __init__(
        self,
        at_port: AtPort,
        *,
        timeout_s: float = 15.0,
        open_timeout_s: float = 5.0,
    ) -> None:
        self._at = at_port
        self._timeout_s = float(timeout_s)
        self._open_timeout_s = float(open_timeout_s)
        self._session = ModemSession()

    @property
    def session(self) -> ModemSession:
        return self._session

    @property
    def state(self) -> SessionState:
        return self._session.state

    # ---- internals ----

    def _fail(self, error: ModemError) -> ModemError:
        self._session.state = SessionState.FAILED
        self._session.diagnosis = error.diagnosis
        logger.error("Modem session failed on %s: %s", self._session.port, error)
        return error

    def _exchange(self, command: str, *, timeout: float | None = None) -> AtResponse:
        t = self._timeout_s if timeout is None else timeout
        logger.debug("AT >> %s", command)
        resp = self._at.execute_command(command, timeout=t)
        logger.debug("AT << %s %s %s", resp.status, resp.data, resp.error or "")
        if resp.status == "timeout":
            raise self._fail(ModemTimeoutError(command, t))
        return resp

    def _require(self, *states: SessionState) -> None:
        if self._session.state not in states:
            raise ModemNotReadyError(
                f"modem is {self._session.state.value}, expected {'/'.join(s.value for s in states)}",
                diagnosis=self._session.diagnosis or f"state_{self._session.state.value}",
            )

    # ---- session pipeline ----

    def open(self, port: str, baud_rate: int) -> None:
        """Open the port once, fail fast. No retry: a busy port stays busy."""
        self._require(SessionState.CLOSED, SessionState.FAILED)
        if self._session.state is SessionState.FAILED:
            self.close()

        self._session = ModemSession(state=SessionState.OPENING, port=port, baud_rate=baud_rate)
        logger.info("Opening modem port=%s baud=%s", port, baud_rate)
        try:
            self._at.open(port, baud_rate, timeout=self._open_timeout_s)
        except ModemOpenError as e:
            self._session.state = SessionState.FAILED
            self._session.diagnosis = e.cause
            logger.error("Modem open failed port=%s cause=%s", port, e.cause)
            raise
        except Exception as e:
            self._session.state = SessionState.FAILED
            self._session.diagnosis = "unknown"
            logger.exception("Modem open failed port=%s", port)
            raise ModemOpenError(port, "unknown", str(e)) from e
        self._session.state = SessionState.OPEN

    def initialize(self) -> None:
        """Ready check, echo off, SIM check, text mode. Any failure is a ModemInitError."""
        self._require(SessionState.OPEN)
        try:
            self._handshake()
        except ModemTimeoutError as e:
            raise self._fail(ModemInitError(str(e), diagnosis="timeout")) from e

        self._session.initialized = True
        logger.info("Modem initialized port=%s", self._session.port)

    def _handshake(self) -> None:
        resp = self._exchange("AT")
        if not resp.ok:
            raise self._fail(ModemInitError("modem did not answer AT", diagnosis="no_response"))

        # Not required for sending.
        for command in ("ATE0", "AT+CMEE=1"):
            resp = self._exchange(command)
            if not resp.ok:
                logger.warning("%s rejected (%s); continuing", command, resp.error or "no detail")

        resp = self._exchange("AT+CPIN?")
        if not resp.ok or "READY" not in resp.text.upper():
            diag = decode_error(resp.error) if not resp.ok else None
            detail = diag.description if diag else resp.text or "no answer"
            raise self._fail(
                ModemInitError(
                    f"SIM not ready: {detail}",
                    diagnosis=diag.diagnosis if diag else "sim_not_ready",
                )
            )

        for command in ('AT+CSCS="GSM"', "AT+CMGF=1"):
            resp = self._exchange(command)
            if not resp.ok:
                diag = decode_error(resp.error)
                raise self._fail(
                    ModemInitError(f"{command} rejected: {diag.description}", diagnosis=diag.diagnosis)
                )

    def read_smsc(self) -> str | None:
        self._require(SessionState.OPEN, SessionState.READY)
        resp = self._exchange("AT+CSCA?")
        if not resp.ok:
            return None
        m = _CSCA_RE.search(resp.text)
        return m.group(1) if m and m.group(1) else None

    def configure_smsc(self, smsc_number: str) -> None:
        """
        Point outbound SMS at the carrier's SMS center and read it back.

        A readback that does not match is raised as SmscMismatchError, distinct from
        any send failure.
        """
        self._require(SessionState.OPEN, SessionState.READY)
        if not self._session.initialized:
            raise ModemNotReadyError("initialize() must run before configure_smsc()")
        if not normalize_smsc(smsc_number):
            raise ValueError("SMSC number is required")

        toa = 145 if smsc_number.startswith("+") else 129
        resp = self._exchange(f'AT+CSCA="{smsc_number}",{toa}')
        if not resp.ok:
            diag = decode_error(resp.error)
            raise self._fail(
                ModemInitError(f"SMSC {smsc_number} rejected: {diag.description}", diagnosis="smsc_rejected")
            )

        actual = self.read_smsc()
        if normalize_smsc(actual) != normalize_smsc(smsc_number):
            raise self._fail(SmscMismatchError(smsc_number, actual))

        self._session.configured_smsc = smsc_number
        self._session.state = SessionState.READY
        logger.info("Modem ready port=%s smsc=%s", self._session.port, smsc_number)

    def adopt_sim_smsc(self) -> None:
        """Go ready with the SMSC already stored on the SIM (no SMSC configured)."""
        self._require(SessionState.OPEN)
        if not self._session.initialized:
            raise ModemNotReadyError("initialize() must run before adopt_sim_smsc()")
        actual = self.read_smsc()
        if not actual:
            raise self._fail(
                ModemInitError("SIM has no SMSC and none is configured", diagnosis="smsc_missing")
            )
        self._session.configured_smsc = actual
        self._session.state = SessionState.READY
        logger.info("Modem ready port=%s smsc=%s (from SIM)", self._session.port, actual)

    def start(self, port: str, baud_rate: int, smsc_number: str | None = None) -> ModemSession:
        """open -> initialize -> configure SMSC, in order; stops at the first failure."""
        self.open(port, baud_rate)
        self.initialize()
        if smsc_number:
            self.configure_smsc(smsc_number)
        else:
            self.adopt_sim_smsc()
        return self._session

    # ---- sending ----

    def send_sms(self, number: str, message: str, mode: SmsMode = SmsMode.TEXT) -> SendResult:
        """
        Send once in `mode`. A text-mode failure of a multi-segment message gets one
        PDU-mode attempt; nothing else is retried.

        A rejection fails the session with the carrier diagnosis; later sends are
        refused until the session is restarted. Timeouts fail it too: whether the
        modem accepted the message is unknown, so the send is never repeated.
        """
        self._require(SessionState.READY)
        segments = gsm7.segment_count(message)

        resp = self._send_once(number, message, mode)
        if resp.ok:
            return self._result(mode, segments, resp)

        diag = decode_error(resp.error)
        if mode is SmsMode.TEXT and segments > 1:
            logger.warning(
                "Text-mode send of %d-segment message failed (%s); trying PDU mode",
                segments,
                diag.code or diag.description,
            )
            resp = self._send_once(number, message, SmsMode.PDU)
            if resp.ok:
                return self._result(SmsMode.PDU, segments, resp)
            diag = decode_error(resp.error)

        logger.error(
            "SMS to %s rejected code=%s diagnosis=%s (%s)",
            number,
            diag.code,
            diag.diagnosis,
            diag.description,
        )
        raise self._fail(
            ModemSendError(
                f"SMS rejected: {diag.description}",
                carrier_code=diag.code,
                diagnosis=diag.diagnosis,
            )
        )

    def _send_once(self, number: str, message: str, mode: SmsMode) -> AtResponse:
        logger.debug("AT >> send %s chars to %s mode=%s", len(message), number, mode.value)
        resp = self._at.send_sms(
            number, message, pdu_mode=mode is SmsMode.PDU, timeout=self._timeout_s
        )
        logger.debug("AT << %s %s %s", resp.status, resp.data, resp.error or "")
        if resp.status == "timeout":
            raise self._fail(ModemTimeoutError(f"send ({mode.value})", self._timeout_s))
        return resp

    @staticmethod
    def _result(mode: SmsMode, segments: int, resp: AtResponse) -> SendResult:
        refs = tuple(m.group(1) for m in (_CMGS_RE.search(line) for line in resp.data) if m)
        return SendResult(mode=mode, segments=segments, message_refs=refs)

    # ---- diagnostics ----

    def diagnose(self) -> ModemStatus:
        """Query SIM, signal, registration and SMSC. Read-only; never changes state."""
        session = self._session
        if session.state not in (SessionState.OPEN, SessionState.READY):
            return ModemStatus(state=session.state, port=session.port, diagnosis=session.diagnosis)

        warnings: list[str] = []

        resp = self._exchange("AT+CPIN?")
        sim = "ready" if resp.ok and "READY" in resp.text.upper() else "error"
        if sim != "ready":
            warnings.append("SIM not ready: check insertion, PIN and credit")

        signal: int | None = None
        resp = self._exchange("AT+CSQ")
        m = _CSQ_RE.search(resp.text) if resp.ok else None
        if m:
            signal = int(m.group(1))
            if signal == 99 or signal < 5:
                warnings.append(f"weak or unknown signal ({signal}/31)")

        registration = "unknown"
        resp = self._exchange("AT+CREG?")
        m = _CREG_RE.search(resp.text) if resp.ok else None
        if m:
            registration = describe_registration(int(m.group(1)))
            if registration == "denied":
                warnings.append("network registration denied")

        smsc = self.read_smsc()
        if session.configured_smsc and normalize_smsc(smsc) != normalize_smsc(session.configured_smsc):
            warnings.append(f"SMSC on modem ({smsc}) differs from configured ({session.configured_smsc})")

        return ModemStatus(
            state=session.state,
            port=session.port,
            sim_status=sim,
            signal_strength=signal,
            registration=registration,
            smsc=smsc,
            diagnosis=session.diagnosis,
            warnings=tuple(warnings),
        )

    def close(self) -> None:
        """Release the port. Safe to call in any state."""
        if self._session.state is SessionState.CLOSED:
            return
        try:
            self._at.close()
        except Exception:
            logger.exception("Error while closing modem port %s", self._session.port)
        logger.info("Modem port %s closed", self._session.port)
        self._session = ModemSession(port=self._session.port, baud_rate=self._session.baud_rate)
