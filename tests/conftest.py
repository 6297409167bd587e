import os
from pathlib import Path

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from doc_gateway.config import Settings
from doc_gateway.webapi import create_app

TOKEN = "s3cret-token"
AUTH = {"Authorization": f"Bearer {TOKEN}"}

# Minimal bytes that pass the OOXML container check; the stub converter never parses them
DOCX_BYTES = b"PK\x03\x04" + b"\x00" * 256
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

_STUB_PRELUDE = """#!/bin/sh
if [ "$1" = "--version" ]; then
  echo "LibreOffice 7.6.4.1 (stub)"
  exit 0
fi
printf '%s\\n' "$@" >> "@LOG@"
outdir=""
prev=""
for arg in "$@"; do
  if [ "$prev" = "--outdir" ]; then outdir="$arg"; fi
  prev="$arg"
  last="$arg"
done
name=$(basename "$last")
stem="${name%.*}"
"""

STUBS = {
    "ok": _STUB_PRELUDE + "printf '%s\\n' '%PDF-1.4' '% stub output' > \"$outdir/$stem.pdf\"\n",
    "fail": _STUB_PRELUDE + "echo 'stub stdout'\necho 'source file could not be loaded' >&2\nexit 77\n",
    "no_output": _STUB_PRELUDE + "exit 0\n",
    "bad_output": _STUB_PRELUDE + "echo 'this is not a pdf' > \"$outdir/$stem.pdf\"\n",
    "slow": "#!/bin/sh\nexec sleep 5\n",
    "slow_ok": _STUB_PRELUDE + "sleep 1\nprintf '%s\\n' '%PDF-1.4' > \"$outdir/$stem.pdf\"\n",
    # a launcher that leaves a child holding the output pipes, like soffice and soffice.bin
    "forking": "#!/bin/sh\nsleep 30 &\nwait\n",
    "broken_version": "#!/bin/sh\necho 'missing libs' >&2\nexit 3\n",
}


def write_stub(tmp_path: Path, kind: str) -> Path:
    script = tmp_path / f"soffice-{kind}"
    script.write_text(STUBS[kind].replace("@LOG@", str(tmp_path / "argv.log")))
    script.chmod(0o755)
    return script


def converter_calls(tmp_path: Path) -> list[list[str]]:
    """Argument vectors the stub converter was invoked with, one list per call."""
    log = tmp_path / "argv.log"
    if not log.exists():
        return []
    calls: list[list[str]] = []
    for line in log.read_text().splitlines():
        if line == "--headless":
            calls.append([])
        calls[-1].append(line)
    return calls


@pytest.fixture
def scratch(tmp_path: Path) -> Path:
    return tmp_path / "scratch"


@pytest.fixture
def make_app(tmp_path: Path, scratch: Path):
    def _make(kind: str = "ok", **overrides) -> FastAPI:
        values = {
            "auth_token": TOKEN,
            "scratch_dir": scratch,
            "converter_bin": str(write_stub(tmp_path, kind)),
            "convert_timeout_sec": 10,
        }
        values.update(overrides)
        return create_app(Settings(**values))

    return _make


@pytest.fixture
def make_client(make_app):
    def _make(kind: str = "ok", **overrides) -> TestClient:
        return TestClient(make_app(kind, **overrides))

    return _make


@pytest.fixture
def client(make_client) -> TestClient:
    return make_client("ok")


def scratch_entries(scratch: Path) -> list[str]:
    return sorted(os.listdir(scratch)) if scratch.exists() else []
