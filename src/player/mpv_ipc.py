from __future__ import annotations

import json
import logging
import os
import queue
import shutil
import socket
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


def _is_windows() -> bool:
    return os.name == "nt"


def _default_ipc_endpoint(app_name: str = "meregaane-mpv") -> str:
    """
    Windows: named pipe (\\.\pipe\<name>)
    Unix:    unix socket path, one per process so two sessions never collide
    """
    if _is_windows():
        return rf"\\.\pipe\{app_name}-{os.getpid()}"
    return f"/tmp/{app_name}-{os.getpid()}.sock"


def _find_mpv_binary(preferred_path: Optional[str] = None) -> Optional[str]:
    """
    preferred_path first, then third_party/mpv/ next to the working dir, then PATH.
    """
    exe = "mpv.exe" if _is_windows() else "mpv"
    candidates: list[str] = []
    if preferred_path:
        candidates.append(preferred_path)
    candidates.append(os.path.join(os.getcwd(), "third_party", "mpv", exe))

    for c in candidates:
        if os.path.isfile(c):
            return c
    return shutil.which(exe)


# -----------------------------
# Transport: newline-delimited JSON over socket / named pipe
# -----------------------------

class _JsonLineTransport:
    def __init__(self, endpoint: str):
        self.endpoint = endpoint
        self._stop = threading.Event()
        self._rx_thread: Optional[threading.Thread] = None
        self._rx_queue: "queue.Queue[dict[str, Any]]" = queue.Queue()
        self._tx_lock = threading.Lock()

        self._sock: Optional[socket.socket] = None
        self._pipe = None

    @property
    def closed(self) -> bool:
        return self._stop.is_set()

    def connect(self, timeout_s: float = 3.0) -> None:
        deadline = time.time() + timeout_s
        last_err: Optional[Exception] = None

        # mpv creates the endpoint a moment after the process starts
        while time.time() < deadline:
            try:
                if _is_windows():
                    self._pipe = open(self.endpoint, "r+b", buffering=0)
                else:
                    s = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
                    s.connect(self.endpoint)
                    self._sock = s
                break
            except OSError as e:
                last_err = e
                time.sleep(0.05)
        else:
            raise OSError(f"Could not connect to mpv IPC at {self.endpoint}: {last_err!r}")

        self._rx_thread = threading.Thread(target=self._rx_loop, name="mpv-ipc-rx", daemon=True)
        self._rx_thread.start()

    def close(self) -> None:
        self._stop.set()
        if self._sock is not None:
            try:
                self._sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            self._sock.close()
            self._sock = None
        if self._pipe is not None:
            try:
                self._pipe.close()
            except OSError:
                pass
            self._pipe = None

    def send(self, payload: dict[str, Any]) -> None:
        line = (json.dumps(payload) + "\n").encode("utf-8")
        with self._tx_lock:
            if self._sock is not None:
                self._sock.sendall(line)
            elif self._pipe is not None:
                self._pipe.write(line)
                self._pipe.flush()
            else:
                raise ConnectionError("mpv IPC is not connected")

    def recv_nowait(self) -> Optional[dict[str, Any]]:
        try:
            return self._rx_queue.get_nowait()
        except queue.Empty:
            return None

    def _read_chunk(self) -> bytes:
        if self._sock is not None:
            return self._sock.recv(4096)
        if self._pipe is not None:
            return self._pipe.read(4096)
        return b""

    def _rx_loop(self) -> None:
        buf = b""
        try:
            while not self._stop.is_set():
                try:
                    chunk = self._read_chunk()
                except OSError:
                    break
                if not chunk:
                    break

                buf += chunk
                while b"\n" in buf:
                    line, buf = buf.split(b"\n", 1)
                    if not line.strip():
                        continue
                    try:
                        msg = json.loads(line.decode("utf-8", errors="replace"))
                    except ValueError:
                        logger.debug("Dropping malformed mpv line: %r", line[:200])
                        continue
                    if isinstance(msg, dict):
                        self._rx_queue.put(msg)
        finally:
            self._stop.set()


# -----------------------------
# Backend: mpv process + JSON IPC protocol
# -----------------------------

@dataclass
class MpvBackendConfig:
    mpv_path: Optional[str] = None
    ipc_endpoint: Optional[str] = None
    audio_only: bool = True
    ytdl_format: str = "bestaudio/best"
    connect_timeout_s: float = 3.0


class MpvIpcBackend:
    """
    mpv driven through --input-ipc-server.

    Nothing here touches Qt. The owner pumps process_messages() from its own
    timer; observers and event callbacks run inside that call.
    """

    def __init__(self, config: Optional[MpvBackendConfig] = None):
        self.config = config or MpvBackendConfig()

        self._mpv_bin = _find_mpv_binary(self.config.mpv_path)
        if not self._mpv_bin:
            raise FileNotFoundError("mpv binary not found (bundled or on PATH).")

        self.ipc = self.config.ipc_endpoint or _default_ipc_endpoint()
        self._proc: Optional[subprocess.Popen] = None
        self._transport = _JsonLineTransport(self.ipc)

        self._observe_id = 0
        self._observers: dict[str, list[Callable[[Any], None]]] = {}
        self._event_handlers: list[Callable[[dict[str, Any]], None]] = []

        self._time_pos_s: float = 0.0

    # ---- lifecycle ----

    def start(self) -> None:
        if self._proc is not None:
            return

        if not _is_windows() and os.path.exists(self.ipc):
            os.remove(self.ipc)

        args = [
            self._mpv_bin,
            "--idle=yes",
            "--keep-open=no",
            "--prefetch-playlist=yes",
            f"--input-ipc-server={self.ipc}",
            f"--ytdl-format={self.config.ytdl_format}",
            "--terminal=no",
            "--msg-level=all=warn",
        ]
        if self.config.audio_only:
            args += ["--no-video", "--audio-display=no"]

        creationflags = getattr(subprocess, "CREATE_NO_WINDOW", 0) if _is_windows() else 0
        self._proc = subprocess.Popen(
            args,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            creationflags=creationflags,
        )
        self._transport.connect(timeout_s=self.config.connect_timeout_s)

        self.observe_property("time-pos", self._on_time_pos)

    def stop(self) -> None:
        try:
            self.command("quit")
        except (OSError, ConnectionError):
            pass
        self._transport.close()

        if self._proc is not None:
            try:
                self._proc.wait(timeout=2.0)
            except subprocess.TimeoutExpired:
                self._proc.terminate()
            self._proc = None

    # ---- protocol ----

    def command(self, *args: Any) -> None:
        self._transport.send({"command": list(args)})

    def set_property(self, name: str, value: Any) -> None:
        self.command("set_property", name, value)

    def observe_property(self, name: str, on_change: Callable[[Any], None]) -> None:
        if name not in self._observers:
            self._observers[name] = []
            self._observe_id += 1
            self.command("observe_property", self._observe_id, name)
        self._observers[name].append(on_change)

    def on_event(self, handler: Callable[[dict[str, Any]], None]) -> None:
        """Receive every non-property event (file-loaded, end-file, ...)."""
        self._event_handlers.append(handler)

    def process_messages(self, max_messages: int = 200) -> None:
        if self._transport.closed:
            raise ConnectionError("mpv IPC connection closed")

        for _ in range(max_messages):
            msg = self._transport.recv_nowait()
            if msg is None:
                break

            event = msg.get("event")
            if event == "property-change":
                for cb in list(self._observers.get(msg.get("name"), ())):
                    cb(msg.get("data"))
            elif event:
                for handler in list(self._event_handlers):
                    handler(msg)

    # ---- cached properties ----

    def _on_time_pos(self, value: Any) -> None:
        self._time_pos_s = float(value) if isinstance(value, (int, float)) else 0.0

    # ---- high-level controls ----

    def load(self, url: str, *, start_playing: bool = True) -> None:
        self.command("loadfile", url, "replace")
        self.set_property("pause", not start_playing)

    def append(self, url: str) -> None:
        # mpv keeps the current entry; everything queued behind it is replaced
        self.command("playlist-clear")
        self.command("loadfile", url, "append")

    def playlist_clear(self) -> None:
        self.command("playlist-clear")

    def playlist_next(self) -> None:
        self.command("playlist-next", "force")

    def pause(self) -> None:
        self.set_property("pause", True)

    def play(self) -> None:
        self.set_property("pause", False)

    def seek_seconds(self, sec: float, *, exact: bool = True) -> None:
        self.command("seek", max(0.0, float(sec)), "absolute+exact" if exact else "absolute")

    def set_volume(self, volume: float) -> None:
        # mpv volume is 0..100 like ours
        self.set_property("volume", min(100.0, max(0.0, float(volume))))

    def position_s(self) -> float:
        return self._time_pos_s
