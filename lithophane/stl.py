"""Binary STL serialization.

Layout, all little-endian:

    [header: 80 bytes][triangle count: uint32][record] * count

where each 50-byte record holds the facet normal, three vertices (three
float32 each) and a uint16 attribute field that is always zero. Slicers
check the file length against the declared count, so the byte length is
always exactly ``84 + 50 * count``.
"""

from __future__ import annotations

import logging
import os
import stat
import struct
import tempfile
from pathlib import Path
from typing import Tuple, Union

import numpy as np

from lithophane.errors import IOFailure
from lithophane.mesh import MeshBuffer

logger = logging.getLogger(__name__)

HEADER_SIZE = 80
COUNT_SIZE = 4
RECORD_SIZE = 50

DEFAULT_HEADER = "binary STL lithophane surface"

RECORD_DTYPE = np.dtype([
    ("normal", "<f4", (3,)),
    ("v0", "<f4", (3,)),
    ("v1", "<f4", (3,)),
    ("v2", "<f4", (3,)),
    ("attr", "<u2"),
])


def expected_size(count: int) -> int:
    """Byte length of a binary STL holding count triangles."""
    return HEADER_SIZE + COUNT_SIZE + count * RECORD_SIZE


def encode_header(text: str = DEFAULT_HEADER) -> bytes:
    """Encode header text as exactly 80 bytes, zero padded.

    Headers starting with "solid" are rejected since readers use that
    prefix to detect ASCII STL.
    """
    header = text.encode("ascii", errors="replace")[:HEADER_SIZE]
    if header[:5].lower() == b"solid":
        raise ValueError("Binary STL header must not start with 'solid'")
    return header.ljust(HEADER_SIZE, b"\0")


def mesh_to_records(mesh: MeshBuffer) -> np.ndarray:
    """Pack a mesh into an array of 50-byte STL records."""
    records = np.zeros(len(mesh), dtype=RECORD_DTYPE)
    records["normal"] = mesh.normals
    records["v0"] = mesh.triangles[:, 0]
    records["v1"] = mesh.triangles[:, 1]
    records["v2"] = mesh.triangles[:, 2]
    return records


def mesh_to_bytes(mesh: MeshBuffer, header: str = DEFAULT_HEADER) -> bytes:
    """Serialize a mesh to binary STL bytes.

    Args:
        mesh: Mesh to serialize
        header: Free header text, at most 80 ASCII characters are kept

    Returns:
        Binary STL content of length 84 + 50 * len(mesh)
    """
    records = mesh_to_records(mesh)
    data = encode_header(header) + struct.pack("<I", len(records)) + records.tobytes()
    logger.debug(f"Serialized {len(records)} triangles into {len(data)} bytes")
    return data


def _file_mode(path: Path) -> int:
    """Mode for a written file: that of the file it replaces, else 0o666 minus the umask."""
    try:
        return stat.S_IMODE(os.stat(path).st_mode)
    except FileNotFoundError:
        umask = os.umask(0)
        os.umask(umask)
        return 0o666 & ~umask


def write_bytes(data: bytes, path: Union[str, Path]) -> int:
    """Write data to path atomically.

    The content goes to a temporary file in the destination directory that
    replaces path only once fully written, so a failed write never leaves
    a truncated file behind.

    Raises:
        IOFailure: If the destination cannot be written
    """
    path = Path(path)
    try:
        fd, tmp_path = tempfile.mkstemp(
            prefix=f".{path.name}.", suffix=".tmp", dir=path.parent
        )
    except OSError as e:
        raise IOFailure(f"Cannot write to {path.parent}: {e}") from e

    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        # mkstemp creates files readable by the owner only
        os.chmod(tmp_path, _file_mode(path))
        os.replace(tmp_path, path)
    except OSError as e:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise IOFailure(f"Failed to write {path}: {e}") from e

    return len(data)


def write_stl(
    mesh: MeshBuffer,
    path: Union[str, Path],
    header: str = DEFAULT_HEADER
) -> int:
    """Serialize a mesh and write it to a binary STL file.

    Args:
        mesh: Mesh to write
        path: Destination file path
        header: Free header text

    Returns:
        Number of bytes written
    """
    n_bytes = write_bytes(mesh_to_bytes(mesh, header), path)
    logger.info(f"Wrote {len(mesh)} triangles ({n_bytes} bytes) to {path}")
    return n_bytes


def read_stl(source: Union[bytes, str, Path]) -> Tuple[bytes, np.ndarray, np.ndarray]:
    """Parse a binary STL and check its length against the declared count.

    Args:
        source: Raw STL bytes or a path to an STL file

    Returns:
        Tuple of (header, Nx3 normals, Nx3x3 triangles) as float32 arrays

    Raises:
        ValueError: If the data is truncated or its length disagrees with
            the triangle count
    """
    if isinstance(source, (bytes, bytearray)):
        data = bytes(source)
    else:
        try:
            data = Path(source).read_bytes()
        except OSError as e:
            raise IOFailure(f"Failed to read {source}: {e}") from e

    if len(data) < HEADER_SIZE + COUNT_SIZE:
        raise ValueError(f"STL data too short: {len(data)} bytes")

    header = data[:HEADER_SIZE]
    (count,) = struct.unpack_from("<I", data, HEADER_SIZE)
    if len(data) != expected_size(count):
        raise ValueError(
            f"STL declares {count} triangles ({expected_size(count)} bytes) "
            f"but holds {len(data)} bytes"
        )

    records = np.frombuffer(data, dtype=RECORD_DTYPE, count=count, offset=HEADER_SIZE + COUNT_SIZE)
    normals = records["normal"].copy()
    triangles = np.stack((records["v0"], records["v1"], records["v2"]), axis=1)
    return header, normals, triangles
