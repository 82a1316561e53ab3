from __future__ import annotations

import argparse
import os
import subprocess
import sys
import time
from pathlib import Path
from socket import AF_INET, SOCK_STREAM, socket
from urllib.error import URLError
from urllib.request import urlopen

from cargotrol.runtime_log import append_runtime_log, log_runtime_error

APP_TITLE = "Cargotrol"
LOOPBACK_HOST = "127.0.0.1"
PORT_ENV_VAR = "CARGOTROL_PORT"
FALLBACK_PORT = 8501
SERVER_READY_TIMEOUT_SECONDS = 45
WINDOW_SIZE = (1600, 940)
WINDOW_MIN_SIZE = (1200, 720)

STREAMLIT_FIXED_FLAGS = [
    "--global.developmentMode=false",
    "--browser.gatherUsageStats=false",
    "--server.headless=true",
    "--server.fileWatcherType=none",
    "--server.maxUploadSize=50",
]
STREAMLIT_THEME_FLAGS = [
    "--theme.base=light",
    "--theme.primaryColor=#0e7490",
    "--theme.backgroundColor=#f8fafc",
    "--theme.secondaryBackgroundColor=#ffffff",
    "--theme.textColor=#0f172a",
]
# The desktop window owns address, port and theme.
RESERVED_FLAG_PREFIXES = ("--server.port", "--server.address", "--server.headless", "--theme.")


def app_script_path() -> Path:
    bundle_root = getattr(sys, "_MEIPASS", None)
    base = Path(bundle_root) if getattr(sys, "frozen", False) and bundle_root else Path(__file__).resolve().parent
    return base / "cargotrol" / "app.py"


def parse_launch_args(argv: list[str]) -> tuple[argparse.Namespace, list[str]]:
    parser = argparse.ArgumentParser(
        prog="cargotrol",
        description="Open Cargotrol in a desktop window. Use --serve to run only the Streamlit server.",
    )
    parser.add_argument("--serve", action="store_true", help="run the Streamlit server in this process")
    parser.add_argument("--port", type=int, default=None, help="preferred local port for the desktop window")
    return parser.parse_known_args(argv)


def preferred_port(requested: int | None) -> int:
    if requested:
        return requested
    configured = os.environ.get(PORT_ENV_VAR, "").strip()
    return int(configured) if configured.isdigit() else FALLBACK_PORT


def port_in_use(port: int, host: str = LOOPBACK_HOST) -> bool:
    with socket(AF_INET, SOCK_STREAM) as probe:
        probe.settimeout(0.3)
        return probe.connect_ex((host, port)) == 0


def pick_free_port(preferred: int) -> int:
    if not port_in_use(preferred):
        return preferred
    with socket(AF_INET, SOCK_STREAM) as probe:
        probe.bind((LOOPBACK_HOST, 0))
        return int(probe.getsockname()[1])


def strip_reserved_flags(args: list[str]) -> list[str]:
    return [arg for arg in args if not arg.startswith(RESERVED_FLAG_PREFIXES)]


def streamlit_run_argv(extra_flags: list[str]) -> list[str]:
    return ["streamlit", "run", str(app_script_path()), *STREAMLIT_FIXED_FLAGS, *extra_flags]


def serve(extra_flags: list[str]) -> int:
    from streamlit.web.cli import main as streamlit_main

    sys.argv = streamlit_run_argv(extra_flags)
    return streamlit_main()


def child_server_command(port: int, extra_flags: list[str]) -> list[str]:
    entry = [sys.executable] if getattr(sys, "frozen", False) else [sys.executable, str(Path(__file__).resolve())]
    return [
        *entry,
        "--serve",
        f"--server.address={LOOPBACK_HOST}",
        f"--server.port={port}",
        *STREAMLIT_THEME_FLAGS,
        *strip_reserved_flags(extra_flags),
    ]


class LocalServer:
    """Streamlit child process that lives as long as the desktop window."""

    def __init__(self, port: int, extra_flags: list[str]) -> None:
        self.port = port
        self.command = child_server_command(port, extra_flags)
        self.process: subprocess.Popen[bytes] | None = None

    @property
    def url(self) -> str:
        return f"http://{LOOPBACK_HOST}:{self.port}/"

    def __enter__(self) -> "LocalServer":
        self.process = subprocess.Popen(
            self.command,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            creationflags=getattr(subprocess, "CREATE_NO_WINDOW", 0),
        )
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def wait_until_ready(self, timeout: float = SERVER_READY_TIMEOUT_SECONDS) -> bool:
        health_url = f"{self.url}_stcore/health"
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if self.process is None or self.process.poll() is not None:
                return False
            try:
                with urlopen(health_url, timeout=1.0) as response:
                    if response.status == 200:
                        return True
            except (URLError, TimeoutError):
                pass
            time.sleep(0.25)
        return False

    def stop(self) -> None:
        process = self.process
        if process is None or process.poll() is not None:
            return
        process.terminate()
        try:
            process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait(timeout=5)


def open_desktop_window(port: int, extra_flags: list[str]) -> int:
    try:
        with LocalServer(pick_free_port(port), extra_flags) as server:
            if not server.wait_until_ready():
                append_runtime_log("ERROR", "launcher", f"Server did not answer on port {server.port}.")
                print(f"{APP_TITLE} server failed to start.", file=sys.stderr)
                return 1

            import webview

            webview.create_window(APP_TITLE, server.url, width=WINDOW_SIZE[0], height=WINDOW_SIZE[1], min_size=WINDOW_MIN_SIZE)
            webview.start()
        return 0
    except Exception as exc:
        log_runtime_error("launcher.desktop", exc)
        print(f"{APP_TITLE} failed to open desktop window.\n\n{exc}", file=sys.stderr)
        return 1


def main() -> int:
    options, extra_flags = parse_launch_args(sys.argv[1:])
    if options.serve:
        return serve(extra_flags)
    return open_desktop_window(preferred_port(options.port), extra_flags)


if __name__ == "__main__":
    raise SystemExit(main())
