# src/ecobin/modem/serial_port.py

from __future__ import annotations

"""
pyserial implementation of the AT-command surface.

Blocking by design. Every read loop is bounded by a deadline; when it passes the
exchange is reported as "timeout" and the caller decides what that means.
"""

import errno
import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout

import serial

from ..core.ports import AtResponse
from ..errors import ModemOpenError
from . import gsm7, pdu

logger = logging.getLogger(__name__)

CTRL_Z = b"\x1a"
_FINAL_OK = ("OK",)
_FINAL_ERROR_RE = re.compile(r"^(ERROR|\+CMS ERROR:.*|\+CME ERROR:.*|NO CARRIER)$")
_READ_SLICE_S = 0.2


def classify_open_error(exc: BaseException) -> str:
    """Map an exception from serial.Serial(...) to a ModemOpenError cause."""
    text = str(exc).lower()
    code = getattr(exc, "errno", None)
    inner = exc.args[0] if exc.args and isinstance(exc.args[0], OSError) else None
    if inner is not None and code is None:
        code = inner.errno

    if "exclusively lock" in text or code in (errno.EBUSY, errno.EAGAIN):
        return "port_busy"
    # Windows reports a port held by another process as "Access is denied".
    if "access is denied" in text:
        return "port_busy"
    if isinstance(exc, FileNotFoundError) or code == errno.ENOENT or "no such file" in text:
        return "not_found"
    if "filenotfounderror" in text or "cannot find the file" in text:
        return "not_found"
    if isinstance(exc, PermissionError) or code == errno.EACCES or "permission denied" in text:
        return "permission_denied"
    return "unknown"


def text_mode_bytes(message: str) -> bytes:
    """Message body for AT+CMGS in text mode (TE charset "GSM", printable only)."""
    clean = gsm7.sanitize(message)
    # ESC cancels and Ctrl-Z submits in text mode; neither may appear in the body.
    clean = clean.replace("\x1b", " ").replace("\x1a", " ")
    return clean.encode("ascii", errors="replace")


class SerialAtPort:
    def __init__(self) -> None:
        self._ser: serial.Serial | None = None
        self._concat_ref = 0

    # ---- open / close ----

    def open(self, port: str, baud_rate: int, *, timeout: float) -> None:
        """
        Open with exclusive access, bounded by `timeout`.

        Some USB-serial drivers block inside open() when another process holds the
        port, so the open runs in a helper thread and is abandoned after `timeout`.
        """
        if self._ser is not None:
            raise ModemOpenError(port, "already_open")

        def _do_open() -> serial.Serial:
            return serial.Serial(
                port=port,
                baudrate=baud_rate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=_READ_SLICE_S,
                write_timeout=timeout,
                exclusive=True,
            )

        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="modem-open")
        fut = pool.submit(_do_open)
        try:
            ser = fut.result(timeout=timeout)
        except FutureTimeout:
            # If the open ever completes, release the port again.
            fut.add_done_callback(lambda f: f.exception() is None and f.result().close())
            raise ModemOpenError(port, "timeout", f"no answer within {timeout:.1f}s") from None
        except (serial.SerialException, OSError) as e:
            raise ModemOpenError(port, classify_open_error(e), str(e)) from e
        except ValueError as e:
            # pyserial rejects bad settings (baud rate, byte size) with ValueError.
            raise ModemOpenError(port, "invalid_config", str(e)) from e
        finally:
            pool.shutdown(wait=False)

        ser.reset_input_buffer()
        self._ser = ser
        logger.debug("Serial port %s opened", port)

    def close(self) -> None:
        ser, self._ser = self._ser, None
        if ser is not None and ser.is_open:
            ser.close()

    # ---- io helpers ----

    def _port(self) -> serial.Serial:
        if self._ser is None:
            raise serial.SerialException("port is not open")
        return self._ser

    def _write(self, data: bytes) -> None:
        ser = self._port()
        ser.write(data)
        ser.flush()

    def _read_response(self, deadline: float, echo: str | None = None) -> AtResponse:
        ser = self._port()
        lines: list[str] = []
        while time.monotonic() < deadline:
            raw = ser.readline()
            if not raw:
                continue
            line = raw.decode("ascii", errors="replace").strip()
            if not line or (echo is not None and line == echo):
                continue
            if line in _FINAL_OK:
                return AtResponse(status="success", data=lines)
            if _FINAL_ERROR_RE.match(line):
                return AtResponse(status="error", data=lines, error=line)
            lines.append(line)
        return AtResponse(status="timeout", data=lines)

    def _wait_prompt(self, deadline: float) -> AtResponse | None:
        """Wait for the "> " prompt. Returns an error/timeout response instead of it."""
        ser = self._port()
        buf = b""
        while time.monotonic() < deadline:
            chunk = ser.read(1)
            if not chunk:
                continue
            buf += chunk
            if buf.endswith(b">"):
                return None
            if buf.endswith(b"\n"):
                line = buf.decode("ascii", errors="replace").strip()
                buf = b""
                if _FINAL_ERROR_RE.match(line):
                    return AtResponse(status="error", error=line)
        return AtResponse(status="timeout")

    # ---- AT surface ----

    def execute_command(self, command: str, *, timeout: float) -> AtResponse:
        deadline = time.monotonic() + timeout
        try:
            self._port().reset_input_buffer()
            self._write(command.encode("ascii") + b"\r")
            return self._read_response(deadline, echo=command)
        except serial.SerialException as e:
            logger.error("Serial error during %s: %s", command, e)
            return AtResponse(status="error", error=f"serial: {e}")

    def send_sms(self, number: str, message: str, *, pdu_mode: bool, timeout: float) -> AtResponse:
        try:
            if pdu_mode:
                return self._send_pdu(number, message, timeout)
            return self._send_text(number, message, timeout)
        except serial.SerialException as e:
            logger.error("Serial error while sending SMS: %s", e)
            return AtResponse(status="error", error=f"serial: {e}")

    def _submit(self, header: str, body: bytes, timeout: float) -> AtResponse:
        deadline = time.monotonic() + timeout
        self._port().reset_input_buffer()
        self._write(header.encode("ascii") + b"\r")
        failed = self._wait_prompt(deadline)
        if failed is not None:
            if failed.status == "timeout":
                # Leave the modem out of input mode before reporting.
                self._write(b"\x1b")
            return failed
        self._write(body + CTRL_Z)
        return self._read_response(deadline)

    def _send_text(self, number: str, message: str, timeout: float) -> AtResponse:
        resp = self.execute_command("AT+CMGF=1", timeout=timeout)
        if not resp.ok:
            return resp
        return self._submit(f'AT+CMGS="{number}"', text_mode_bytes(message), timeout)

    def _send_pdu(self, number: str, message: str, timeout: float) -> AtResponse:
        self._concat_ref = (self._concat_ref + 1) % 256
        pdus = pdu.encode_message(number, gsm7.sanitize(message), reference=self._concat_ref)

        resp = self.execute_command("AT+CMGF=0", timeout=timeout)
        if not resp.ok:
            return resp

        data: list[str] = []
        try:
            for item in pdus:
                resp = self._submit(f"AT+CMGS={item.tpdu_length}", item.hex.encode("ascii"), timeout)
                data.extend(resp.data)
                if not resp.ok:
                    return AtResponse(status=resp.status, data=data, error=resp.error)
            return AtResponse(status="success", data=data)
        finally:
            restore = self.execute_command("AT+CMGF=1", timeout=timeout)
            if not restore.ok:
                logger.warning("Could not restore text mode after PDU send: %s", restore.error)
