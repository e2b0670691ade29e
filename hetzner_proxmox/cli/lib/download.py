"""
HTTP downloads (installer ISOs, repository keys).
"""

import gzip
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


def make_session(retry_count: int = 3) -> requests.Session:
    """
    Create a session that retries idempotent requests on transient errors.
    """
    session = requests.Session()
    retry_strategy = Retry(
        total=retry_count,
        backoff_factor=1,  # 1s, 2s, 4s...
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["GET", "HEAD"],
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def fetch_text(url: str, timeout: int = 30, session: Optional[requests.Session] = None) -> str:
    """
    GET a small text resource.

    Raises:
        RuntimeError: If the request fails
    """
    session = session or make_session()
    try:
        response = session.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.exceptions.RequestException as e:
        raise RuntimeError(f"Failed to fetch {url}: {e}")
    return response.text


def fetch_bytes(url: str, timeout: int = 30, session: Optional[requests.Session] = None) -> bytes:
    session = session or make_session()
    try:
        response = session.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.exceptions.RequestException as e:
        raise RuntimeError(f"Failed to fetch {url}: {e}")
    return response.content


def download_file(
    url: str,
    dest: str,
    decompress_gzip: bool = False,
    timeout: int = 60,
    session: Optional[requests.Session] = None,
) -> Path:
    """
    Stream a file to disk, optionally gunzipping it on the way.

    The download lands in a temp file next to `dest` and is renamed into
    place only once complete.

    Args:
        url: Source URL
        dest: Final file path (the decompressed file when `decompress_gzip`)
        decompress_gzip: Treat the download as .gz and store the uncompressed data
        timeout: Connect/read timeout in seconds
        session: Optional pre-configured session

    Returns:
        Path of the downloaded file

    Raises:
        RuntimeError: If the download fails or produces an empty file
    """
    dest_path = Path(dest)
    dest_path.parent.mkdir(parents=True, exist_ok=True)
    session = session or make_session()

    tmp_fd, tmp_path = tempfile.mkstemp(prefix=f".{dest_path.name}.", dir=str(dest_path.parent))
    try:
        with os.fdopen(tmp_fd, "wb") as file:
            try:
                with session.get(url, stream=True, timeout=timeout) as response:
                    response.raise_for_status()
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        if chunk:
                            file.write(chunk)
            except requests.exceptions.RequestException as e:
                raise RuntimeError(f"Failed to download {url}: {e}")

        if decompress_gzip:
            unpacked = f"{tmp_path}.unpacked"
            try:
                with gzip.open(tmp_path, "rb") as src, open(unpacked, "wb") as dst:
                    shutil.copyfileobj(src, dst, CHUNK_SIZE)
            except (OSError, EOFError) as e:
                if os.path.exists(unpacked):
                    os.unlink(unpacked)
                raise RuntimeError(f"Failed to decompress {url}: {e}")
            os.replace(unpacked, tmp_path)

        if os.path.getsize(tmp_path) == 0:
            raise RuntimeError(f"Downloaded file from {url} is empty")

        os.chmod(tmp_path, 0o644)
        os.replace(tmp_path, dest_path)
    finally:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass

    logger.info("Downloaded %s to %s", url, dest_path)
    return dest_path


def ensure_iso(url: str, dest: str, session: Optional[requests.Session] = None) -> Path:
    """
    Make sure an installer ISO is present, downloading it if needed.

    A `.gz` URL is decompressed into `dest`.

    Raises:
        RuntimeError: If an existing file is empty or the download fails
    """
    dest_path = Path(dest)
    if dest_path.exists():
        if dest_path.stat().st_size == 0:
            raise RuntimeError(f"ISO file {dest_path} exists but is empty; remove it and retry")
        return dest_path
    return download_file(url, dest, decompress_gzip=url.endswith(".gz"), session=session)
