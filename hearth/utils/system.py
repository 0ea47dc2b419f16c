import json
import os
import platform
import shlex
import subprocess
import tarfile
import tempfile
import zipfile
from pathlib import Path
from typing import Dict, List, Optional, Union

import requests

from hearth.core.models import CommandResult
from hearth.utils.logger import sys_logger


# --- CORE EXECUTION ---

def run_command(
        cmd: Union[str, List[str]],
        env: Optional[Dict[str, str]] = None,
        input: Optional[str] = None,
        cwd: Optional[str] = None,
) -> CommandResult:
    """
    Runs a local tool and captures its output.
    Strings are split with shlex; lists are passed verbatim (use lists for Windows paths).
    Extra env entries are layered over the current process environment.
    """
    argv = shlex.split(cmd) if isinstance(cmd, str) else list(cmd)

    full_env = None
    if env:
        full_env = dict(os.environ)
        full_env.update(env)

    sys_logger.debug(f"[CMD] {' '.join(argv)}")
    try:
        proc = subprocess.run(
            argv,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            universal_newlines=True,
            env=full_env,
            input=input,
            cwd=cwd,
        )
    except OSError as e:
        # Missing executable and similar: report like a failed command
        return CommandResult(returncode=127, stderr=f"Local execution exception: {str(e)}")

    result = CommandResult(returncode=proc.returncode, stdout=proc.stdout or "", stderr=proc.stderr or "")
    if result.failed:
        sys_logger.debug(f"[CMD-FAIL] rc={result.returncode} {result.stderr.strip()[-300:]}")
    return result


# --- FILE OPERATIONS ---

def write_file(path: Union[str, Path], content: str) -> bool:
    """
    Truncate-then-write of a local file through a temp file and rename.
    Returns True if the content changed.
    """
    target = Path(path)
    if target.exists() and target.read_text(encoding="utf-8") == content:
        return False

    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(target.parent), prefix=f".{target.name}.")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp_path, target)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise
    return True


def write_json(path: Union[str, Path], document: dict) -> bool:
    return write_file(path, json.dumps(document, indent=2) + "\n")


def make_directory(path: Union[str, Path]) -> bool:
    """Creates a directory if absent (mkdir -p). Returns True if it was created."""
    target = Path(path)
    if target.is_dir():
        return False
    target.mkdir(parents=True, exist_ok=True)
    return True


# --- DOWNLOADS ---

def download_file(url: str, dest: Union[str, Path], timeout: float = 60.0) -> Path:
    """
    Streams a URL to disk. An existing destination is reused as a cache hit.
    The partial file never appears under the final name.
    """
    target = Path(dest)
    if target.exists() and target.stat().st_size > 0:
        sys_logger.info(f"Download cache hit: {target}")
        return target

    target.parent.mkdir(parents=True, exist_ok=True)
    partial = target.with_name(target.name + ".part")

    sys_logger.info(f"Downloading {url} -> {target}")
    with requests.get(url, stream=True, timeout=timeout) as response:
        response.raise_for_status()
        with open(partial, "wb") as f:
            for chunk in response.iter_content(chunk_size=1024 * 1024):
                if chunk:
                    f.write(chunk)
    os.replace(partial, target)
    return target


def extract_members(archive: Union[str, Path], names: List[str], dest_dir: Union[str, Path]) -> List[Path]:
    """
    Extracts the archive members whose basename is in `names` into dest_dir (flattened).
    Supports .zip and tar archives. Raises FileNotFoundError if a name is missing.
    """
    archive = Path(archive)
    dest = Path(dest_dir)
    dest.mkdir(parents=True, exist_ok=True)
    wanted = set(names)
    written = []

    if zipfile.is_zipfile(archive):
        with zipfile.ZipFile(archive) as zf:
            for member in zf.namelist():
                base = member.replace("\\", "/").rsplit("/", 1)[-1]
                if base in wanted:
                    with zf.open(member) as src, open(dest / base, "wb") as out:
                        out.write(src.read())
                    wanted.discard(base)
                    written.append(dest / base)
    else:
        with tarfile.open(archive, "r:*") as tf:
            for member in tf.getmembers():
                base = member.name.rsplit("/", 1)[-1]
                if member.isfile() and base in wanted:
                    src = tf.extractfile(member)
                    with open(dest / base, "wb") as out:
                        out.write(src.read())
                    wanted.discard(base)
                    written.append(dest / base)

    if wanted:
        raise FileNotFoundError(f"Missing in {archive.name}: {', '.join(sorted(wanted))}")
    return written


# --- TOOLS / COMMANDS ---

def files_present(directory: Union[str, Path], names: List[str]) -> bool:
    return all((Path(directory) / name).is_file() for name in names)


def reboot_command() -> List[str]:
    if platform.system() == "Windows":
        return ["shutdown.exe", "/r", "/t", "0"]
    return ["shutdown", "-r", "now"]


def request_reboot() -> CommandResult:
    """Schedules an immediate restart of the machine."""
    sys_logger.warning("Requesting machine reboot")
    return run_command(reboot_command())
