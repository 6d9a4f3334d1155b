"""Remote desktop (.rdp) file generation for lab VMs."""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

RDP_PORT = 3389


def build_rdp(address: str, username: str | None = None, port: int = RDP_PORT) -> str:
    """Build .rdp file content pointing at a lab VM.

    Args:
        address: Public IP or DNS name of the VM.
        username: Optional user name to prefill in the client.
        port: RDP port on the VM.

    Returns:
        File content with CRLF line endings, as Windows clients expect.
    """
    if not address:
        raise ValueError("RDP address is empty")

    lines = [
        f"full address:s:{address}:{port}",
        "prompt for credentials:i:1",
        "administrative session:i:0",
        "authentication level:i:2",
        "screen mode id:i:2",
        "session bpp:i:32",
        "compression:i:1",
        "keyboardhook:i:2",
        "audiocapturemode:i:0",
        "videoplaybackmode:i:1",
        "connection type:i:7",
        "networkautodetect:i:1",
        "bandwidthautodetect:i:1",
        "displayconnectionbar:i:1",
        "redirectclipboard:i:1",
        "redirectprinters:i:1",
        "autoreconnection enabled:i:1",
        "negotiate security layer:i:1",
    ]
    if username:
        lines.append(f"username:s:{username}")
    return "\r\n".join(lines) + "\r\n"


def write_rdp(path: Path, address: str, username: str | None = None) -> Path:
    """Write an .rdp file, creating the parent directory if needed."""
    path.parent.mkdir(parents=True, exist_ok=True)
    # newline="" keeps the CRLF endings intact on every platform
    with open(path, "w", newline="") as f:
        f.write(build_rdp(address, username=username))
    logger.debug(f"Wrote {path}")
    return path
