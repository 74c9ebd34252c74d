"""
Multi-host images: one core.img booting several machines.

Each host owns a directory ``<memdisk>/<host_id>/`` with its detection
snippet, its parameters and its menus. Peer hosts are brought in as tar
archives of such a directory, produced by their own build.
"""
from __future__ import annotations

import logging
import re
import shutil
import tarfile
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from grub_early.core.errors import ConfigError, MissingInputError
from grub_early.core.requirements.artifact import ARTIFACT_FILENAME
from grub_early.core.requirements.sources import ScriptSource

from .probe import machine_uuid

_log = logging.getLogger("grub_early.multi_host")

HOST_DETECTION_FILENAME = "detect.cfg"
HOST_CONFIGURATION_FILENAME = "params.cfg"
HOST_MENUS_FILENAME = "menus.cfg"
REQUIRED_HOST_FILES = (HOST_DETECTION_FILENAME, HOST_CONFIGURATION_FILENAME, HOST_MENUS_FILENAME)

_S = r"[ \t]*"
_ENTRY = rf"{_S}[\w-]+{_S}:{_S}[^|]+{_S}"
_OTHER_HOSTS_RE = re.compile(rf"^{_ENTRY}(\|{_ENTRY})*$")


@dataclass(frozen=True)
class PeerHost:
    host_id: str
    archive: Path


@dataclass
class HostLayout:
    """Where the current host and its peers live in the memdisk."""

    host_id: str
    hostname: str
    peers: List[PeerHost] = field(default_factory=list)
    multi: bool = False

    @property
    def all_host_ids(self) -> List[str]:
        return [self.host_id] + [p.host_id for p in self.peers]

    def host_dir(self, memdisk_dir: Path, host_id: Optional[str] = None) -> Path:
        if not self.multi:
            return Path(memdisk_dir)
        return Path(memdisk_dir) / (host_id or self.host_id)

    @property
    def script_prefix(self) -> str:
        """Boot-time path prefix of host files, relative to ``$prefix``."""
        return "/$hostname" if self.multi else ""


def parse_other_hosts(value: Optional[str], current_host_id: str = "") -> List[PeerHost]:
    """``id:archive | id:archive`` -> peers, minus the current host."""
    if not value or not value.strip():
        return []
    if not _OTHER_HOSTS_RE.match(value):
        raise ConfigError(f"Invalid value for option '--other-hosts' (input: {value})")
    peers: List[PeerHost] = []
    for part in value.split("|"):
        part = part.strip()
        if not part:
            continue
        host_id, _, archive = part.partition(":")
        host_id = host_id.strip()
        if host_id == current_host_id:
            continue
        peers.append(PeerHost(host_id=host_id, archive=Path(archive.strip())))
    _log.debug("Other hosts: %s", ",".join(p.host_id for p in peers))
    return peers


def derive_host_id(hostname: str, uuid: Optional[str] = None, *, short_uuid: bool = True) -> str:
    if uuid:
        return uuid
    return f"{hostname}_{machine_uuid(short_uuid)}"


def build_layout(
    hostname: str,
    *,
    other_hosts: Optional[str] = None,
    multi_hosts: bool = False,
    uuid: Optional[str] = None,
    short_uuid: bool = True,
) -> HostLayout:
    # validated before any host id lookup
    if other_hosts and not _OTHER_HOSTS_RE.match(other_hosts):
        raise ConfigError(f"Invalid value for option '--other-hosts' (input: {other_hosts})")
    multi = bool(other_hosts and other_hosts.strip()) or multi_hosts
    if not multi:
        return HostLayout(host_id=hostname, hostname=hostname)
    _log.info("In multi-host mode")
    host_id = derive_host_id(hostname, uuid, short_uuid=short_uuid)
    _log.debug("HOST_ID: %s", host_id)
    return HostLayout(
        host_id=host_id,
        hostname=hostname,
        peers=parse_other_hosts(other_hosts, host_id),
        multi=True,
    )


def extract_peer_archive(peer: PeerHost, memdisk_dir: Path) -> Path:
    """Unpack a peer host archive into ``<memdisk>/<host_id>``, replacing it."""
    archive = Path(peer.archive)
    if not archive.is_file():
        raise MissingInputError(
            f"Host '{peer.host_id}' archive file '{archive}' doesn't exist nor is readable"
        )
    memdisk_dir = Path(memdisk_dir)
    memdisk_dir.mkdir(parents=True, exist_ok=True)
    tmp = Path(tempfile.mkdtemp(prefix=f".{peer.host_id}-", dir=memdisk_dir.parent))
    try:
        _log.debug("extracting '%s' to '%s'", archive, tmp)
        try:
            with tarfile.open(archive) as tar:
                tar.extractall(tmp, filter="data")
        except (tarfile.TarError, OSError) as exc:
            raise MissingInputError(f"Host '{peer.host_id}' archive file '{archive}' is not readable: {exc}") from exc

        for name in REQUIRED_HOST_FILES:
            if not (tmp / name).is_file():
                raise MissingInputError(
                    f"Required host '{peer.host_id}' file '{tmp / name}' doesn't exist nor is readable"
                )

        dest = memdisk_dir / peer.host_id
        if dest.exists():
            _log.debug("removing current host dir '%s'", dest)
            shutil.rmtree(dest)
        shutil.move(str(tmp), str(dest))
        return dest
    finally:
        if tmp.exists():
            shutil.rmtree(tmp, ignore_errors=True)


def peer_sources(peer_dir: Path, host_id: str) -> List[ScriptSource]:
    d = Path(peer_dir)
    return [
        ScriptSource.from_path(d / HOST_CONFIGURATION_FILENAME, "peer", label=f"{host_id}:{HOST_CONFIGURATION_FILENAME}"),
        ScriptSource.from_path(d / HOST_MENUS_FILENAME, "peer", label=f"{host_id}:{HOST_MENUS_FILENAME}"),
    ]


def peer_artifact(peer_dir: Path) -> Path:
    return Path(peer_dir) / ARTIFACT_FILENAME
