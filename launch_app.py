from __future__ import annotations

import hashlib
import os
import subprocess
import sys
import venv
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parent
VENV_DIR = PROJECT_ROOT / ".venv"
PROJECT_FILE = PROJECT_ROOT / "pyproject.toml"
REQUIREMENTS_MARKER = VENV_DIR / ".requirements.applied"
APP_DIR = PROJECT_ROOT / "app"
SEED_SCRIPT = APP_DIR / "scripts" / "seed_agents.py"
HOST = os.environ.get("ROSTER_HOST", "127.0.0.1")
PORT = os.environ.get("ROSTER_PORT", "8000")


def venv_python() -> Path:
    if os.name == "nt":
        return VENV_DIR / "Scripts" / "python.exe"
    return VENV_DIR / "bin" / "python"


def ensure_virtualenv() -> None:
    if VENV_DIR.exists() and venv_python().exists():
        return

    print(f"[launcher] Creating virtual environment at {VENV_DIR}...")
    builder = venv.EnvBuilder(with_pip=True, upgrade=False, clear=False)
    builder.create(VENV_DIR)


def current_requirements_signature() -> str:
    if not PROJECT_FILE.exists():
        raise FileNotFoundError(f"Project file not found: {PROJECT_FILE}")
    return hashlib.sha256(PROJECT_FILE.read_bytes()).hexdigest()


def ensure_requirements() -> None:
    python_exec = venv_python()
    signature = current_requirements_signature()

    if REQUIREMENTS_MARKER.exists() and REQUIREMENTS_MARKER.read_text().strip() == signature:
        print("[launcher] Dependencies satisfied.")
        return

    print("[launcher] Making sure pip is up to date...")
    subprocess.check_call([str(python_exec), "-m", "pip", "install", "--upgrade", "pip"])

    print(f"[launcher] Installing the project from {PROJECT_FILE}...")
    subprocess.check_call([str(python_exec), "-m", "pip", "install", "-e", str(PROJECT_ROOT)])

    REQUIREMENTS_MARKER.write_text(signature)


def launch_app(seed: bool = False) -> int:
    ensure_virtualenv()
    ensure_requirements()

    python_exec = venv_python()
    if seed:
        print("[launcher] Seeding demo agents and holidays...")
        subprocess.check_call([str(python_exec), str(SEED_SCRIPT)])

    print(f"[launcher] Starting Duty Roster API on http://{HOST}:{PORT} ...")
    return subprocess.call(
        [
            str(python_exec),
            "-m",
            "uvicorn",
            "api:app",
            "--app-dir",
            str(APP_DIR),
            "--host",
            HOST,
            "--port",
            PORT,
        ]
    )


if __name__ == "__main__":
    try:
        exit_code = launch_app(seed="--seed" in sys.argv[1:])
    except subprocess.CalledProcessError as exc:
        print(f"[launcher] Command failed with exit code {exc.returncode}", file=sys.stderr)
        sys.exit(exc.returncode)
    except Exception as exc:
        print(f"[launcher] {exc}", file=sys.stderr)
        sys.exit(1)
    else:
        sys.exit(exit_code)
