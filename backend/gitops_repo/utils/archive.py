"""Tar+gzip unpacking for archive uploads."""
import io
import logging
import os
import tarfile

logger = logging.getLogger(__name__)


class UnsafeArchiveError(ValueError):
    """Raised when an archive member would escape the target directory."""
    pass


def _safe_join(root: str, member_name: str) -> str:
    target = os.path.realpath(os.path.join(root, member_name))
    if target == root:
        return target
    if not target.startswith(root + os.sep):
        raise UnsafeArchiveError(f"archive member {member_name!r} escapes {root}")
    if os.path.relpath(target, root).split(os.sep)[0] == ".git":
        raise UnsafeArchiveError(f"archive member {member_name!r} writes into .git")
    return target


def unpack_tgz(data: bytes, to_dir: str, perm: int = 0o755) -> list[str]:
    """
    Extract a tar.gz archive held in memory into ``to_dir``.

    Only directories and regular files are extracted; links, devices and
    other member types are skipped with a warning.

    Returns:
        Paths of the extracted regular files
    """
    os.makedirs(to_dir, mode=perm, exist_ok=True)
    root = os.path.realpath(to_dir)
    extracted = []

    with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as archive:
        for member in archive:
            target = _safe_join(root, member.name)
            if member.isdir():
                os.makedirs(target, mode=member.mode or perm, exist_ok=True)
            elif member.isfile():
                os.makedirs(os.path.dirname(target), mode=perm, exist_ok=True)
                source = archive.extractfile(member)
                with source, open(target, "wb") as out:
                    while chunk := source.read(64 * 1024):
                        out.write(chunk)
                extracted.append(target)
                logger.debug(f"Extracted {target}")
            else:
                logger.warning(f"Skipping unsupported archive member {member.name!r} (type {member.type!r})")

    logger.info(f"Unpacked {len(extracted)} files into {to_dir}")
    return extracted
