"""Materializes store packages into project directories.

Link types are tried in order of preference: directory symlink, Windows
junction, then a tree of per-file hard links. Which of them work is probed
once per link root.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from ..common.logging_utils import extra_context, is_debug_enabled
from ..errors import LinkError, PpmError
from ..models.dependency import ResolvedDependency
from ..models.ecosystem import Ecosystem
from .models import SymlinkConfig, SymlinkEntry, SymlinkStatus, SymlinkStructure, SymlinkType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlatformCapabilities:
    """Link kinds the filesystem at a location accepts."""

    symlinks: bool
    junctions: bool
    hard_links: bool


class _LinkFailure(Exception):
    """Internal: carries the status to report for a failed link."""

    def __init__(self, status: SymlinkStatus, message: str):
        super().__init__(message)
        self.status = status


def _create_junction(target: str, link_path: str) -> None:
    if os.name != "nt":
        raise OSError("Junctions are only available on Windows")
    import _winapi  # pylint: disable=import-outside-toplevel

    _winapi.CreateJunction(target, link_path)


def _create_hardlink_tree(target: str, link_path: str) -> None:
    """Mirror target's directory tree at link_path with per-file hard links."""
    os.makedirs(link_path)
    try:
        for dirpath, _, filenames in os.walk(target):
            rel = os.path.relpath(dirpath, target)
            dest_dir = link_path if rel == "." else os.path.join(link_path, rel)
            os.makedirs(dest_dir, exist_ok=True)
            for filename in filenames:
                os.link(os.path.join(dirpath, filename), os.path.join(dest_dir, filename))
    except OSError:
        shutil.rmtree(link_path, ignore_errors=True)
        raise


def _remove_path(path: str) -> None:
    """Remove a link of any kind, or a hard-link tree."""
    if os.path.islink(path):
        os.unlink(path)
    elif os.name == "nt" and os.path.isdir(path) and os.path.realpath(path) != os.path.abspath(path):
        os.rmdir(path)  # junction
    elif os.path.isdir(path):
        shutil.rmtree(path)
    else:
        os.remove(path)


def _same_path(a: str, b: str) -> bool:
    return os.path.normcase(os.path.realpath(a)) == os.path.normcase(os.path.realpath(b))


def _is_hardlink_tree(target: str, path: str) -> bool:
    """True if path is a real directory whose first file shares an inode with target's."""
    if not os.path.isdir(path) or os.path.islink(path):
        return False
    for dirpath, _, filenames in os.walk(target):
        for filename in filenames:
            rel = os.path.relpath(os.path.join(dirpath, filename), target)
            mirror = os.path.join(path, rel)
            try:
                return os.path.samefile(os.path.join(dirpath, filename), mirror)
            except OSError:
                return False
    return True


class LinkManager:
    """Creates, verifies and removes project links into the global store.

    Args:
        config: Default link behaviour.
    """

    def __init__(self, config: Optional[SymlinkConfig] = None):
        self.config = config or SymlinkConfig()
        self._capabilities: Dict[str, PlatformCapabilities] = {}
        self._capabilities_lock = threading.Lock()

    def probe_capabilities(self, directory: str) -> PlatformCapabilities:
        """Try each link kind in a scratch directory under ``directory``."""
        directory = os.path.abspath(directory)
        with self._capabilities_lock:
            cached = self._capabilities.get(directory)
        if cached is not None:
            return cached

        os.makedirs(directory, exist_ok=True)
        scratch = tempfile.mkdtemp(prefix=".ppm-probe-", dir=directory)
        try:
            target = os.path.join(scratch, "target")
            os.mkdir(target)
            probe_file = os.path.join(target, "probe")
            with open(probe_file, "wb"):
                pass

            symlinks = junctions = hard_links = True
            try:
                os.symlink(target, os.path.join(scratch, "symlink"), target_is_directory=True)
            except (OSError, NotImplementedError):
                symlinks = False
            try:
                _create_junction(target, os.path.join(scratch, "junction"))
            except OSError:
                junctions = False
            try:
                os.link(probe_file, os.path.join(scratch, "hardlink"))
            except OSError:
                hard_links = False
        finally:
            shutil.rmtree(scratch, ignore_errors=True)

        caps = PlatformCapabilities(symlinks=symlinks, junctions=junctions, hard_links=hard_links)
        logger.debug("Link capabilities at %s: %s", directory, caps)
        with self._capabilities_lock:
            self._capabilities[directory] = caps
        return caps

    def link(
        self,
        project_root: str,
        ecosystem: Ecosystem,
        resolved_deps: Iterable[ResolvedDependency],
        global_store_root: str,
        config: Optional[SymlinkConfig] = None,
        structure: Optional[SymlinkStructure] = None,
    ) -> SymlinkStructure:
        """Link every dependency of one ecosystem into the project.

        Failures are recorded per package in ``structure.errors``; the other
        dependencies are still linked.

        Args:
            project_root: Project directory.
            ecosystem: Only dependencies of this ecosystem are linked.
            resolved_deps: Dependencies to link.
            global_store_root: Root of the global store holding the targets.
            config: Overrides the manager's default configuration.
            structure: Existing structure to extend, e.g. loaded from disk.

        Returns:
            SymlinkStructure: Links of this ecosystem after the run.
        """
        config = config or self.config
        structure = structure or SymlinkStructure.for_ecosystem(project_root, ecosystem)
        structure.errors = {}
        caps = self.probe_capabilities(structure.root_path)

        counts: Dict[SymlinkStatus, int] = {}
        for dep in resolved_deps:
            if dep.ecosystem is not ecosystem:
                continue
            status = self.create_link(structure, dep, global_store_root, config, caps)
            counts[status] = counts.get(status, 0) + 1

        logger.info(
            "Linked %s packages into %s: %s",
            ecosystem.value,
            structure.root_path,
            ", ".join(f"{s.value}={n}" for s, n in counts.items()) or "nothing to do",
        )
        return structure

    def create_link(
        self,
        structure: SymlinkStructure,
        dep: ResolvedDependency,
        global_store_root: str,
        config: Optional[SymlinkConfig] = None,
        caps: Optional[PlatformCapabilities] = None,
    ) -> SymlinkStatus:
        """Record and materialize one link; failures roll the entry back."""
        config = config or self.config
        previous = structure.get_link(dep.name)
        try:
            status = structure.add_dependency_link(dep, global_store_root, config)
        except PpmError as exc:
            structure.errors[dep.name] = str(exc)
            return SymlinkStatus.FAILED
        if status is SymlinkStatus.ALREADY_EXISTS:
            return status

        entry = structure.links[dep.name]
        link_path = os.path.join(structure.root_path, *entry.link_path.split("/"))
        try:
            self._materialize(entry, link_path, config, caps or self.probe_capabilities(structure.root_path))
        except _LinkFailure as exc:
            if previous is not None:
                structure.links[dep.name] = previous
            else:
                structure.remove_link(dep.name)
            structure.errors[dep.name] = str(exc)
            logger.warning("Could not link %s: %s", dep.identifier(), exc)
            return exc.status

        if is_debug_enabled(logger):
            logger.debug(
                "Link created",
                extra=extra_context(
                    event="link",
                    component="link_manager",
                    action="create_link",
                    outcome="success",
                    target=dep.identifier(),
                    link_type=entry.link_type.value,
                ),
            )
        return SymlinkStatus.CREATED

    def _materialize(
        self, entry: SymlinkEntry, link_path: str, config: SymlinkConfig, caps: PlatformCapabilities
    ) -> None:
        target = entry.target_path
        if config.validate_targets and not os.path.isdir(target):
            raise _LinkFailure(SymlinkStatus.TARGET_NOT_FOUND, f"Link target does not exist: {target}")

        parent = os.path.dirname(link_path)
        try:
            if config.create_parent_dirs:
                os.makedirs(parent, exist_ok=True)
            elif not os.path.isdir(parent):
                raise _LinkFailure(SymlinkStatus.FAILED, f"Parent directory missing: {parent}")

            if os.path.lexists(link_path):
                if self.is_valid_link(entry, link_path):
                    entry.exists = True
                    return
                if _is_hardlink_tree(target, link_path):
                    entry.link_type = SymlinkType.HARD_LINK
                    entry.exists = True
                    return
                if not config.overwrite_existing:
                    raise _LinkFailure(SymlinkStatus.FAILED, f"Path already exists: {link_path}")
                _remove_path(link_path)
        except PermissionError as exc:
            raise _LinkFailure(SymlinkStatus.PERMISSION_DENIED, str(exc)) from exc
        except OSError as exc:
            raise _LinkFailure(SymlinkStatus.FAILED, str(exc)) from exc

        candidates: List[SymlinkType] = []
        if caps.symlinks:
            candidates.append(SymlinkType.DIRECTORY)
        if caps.junctions and config.use_junctions_on_windows:
            candidates.append(SymlinkType.JUNCTION)
        if caps.hard_links and config.fallback_to_hardlinks:
            candidates.append(SymlinkType.HARD_LINK)
        if not candidates:
            raise _LinkFailure(SymlinkStatus.NOT_SUPPORTED, "No supported link type at this location")

        last_error: Optional[OSError] = None
        for link_type in candidates:
            try:
                if link_type is SymlinkType.DIRECTORY:
                    os.symlink(target, link_path, target_is_directory=True)
                elif link_type is SymlinkType.JUNCTION:
                    _create_junction(target, link_path)
                else:
                    _create_hardlink_tree(target, link_path)
            except OSError as exc:
                last_error = exc
                continue
            entry.link_type = link_type
            entry.exists = True
            return

        status = SymlinkStatus.PERMISSION_DENIED if isinstance(last_error, PermissionError) else SymlinkStatus.FAILED
        raise _LinkFailure(status, str(last_error))

    def is_valid_link(self, entry: SymlinkEntry, path: str) -> bool:
        """Check that the link at path points at the entry's store target."""
        if not os.path.isdir(entry.target_path):
            return False
        if entry.link_type is SymlinkType.HARD_LINK:
            return _is_hardlink_tree(entry.target_path, path)
        return os.path.lexists(path) and _same_path(path, entry.target_path)

    def verify_symlinks(self, structure: SymlinkStructure) -> List[str]:
        """Refresh each entry's ``exists`` flag from disk and return the broken names."""
        broken = []
        for name, entry in list(structure.links.items()):
            path = structure.get_full_link_path(name)
            valid = path is not None and self.is_valid_link(entry, path)
            structure.update_link_status(name, valid)
            if not valid:
                broken.append(name)
        return broken

    def cleanup_broken_links(self, structure: SymlinkStructure) -> List[str]:
        """Verify, then delete broken links from disk and from the structure."""
        self.verify_symlinks(structure)
        broken = [name for name, entry in structure.links.items() if not entry.exists]
        for name in broken:
            path = structure.get_full_link_path(name)
            if path and os.path.lexists(path):
                try:
                    _remove_path(path)
                except OSError as exc:
                    raise LinkError(f"Could not remove broken link {path}: {exc}") from exc
        return structure.cleanup_broken_links()

    def remove_package_links(self, structure: SymlinkStructure, names: Iterable[str]) -> List[str]:
        """Remove links by package name; returns the names actually removed."""
        removed = []
        for name in names:
            path = structure.get_full_link_path(name)
            if path is None:
                continue
            if os.path.lexists(path):
                try:
                    _remove_path(path)
                except OSError as exc:
                    raise LinkError(f"Could not remove link {path}: {exc}") from exc
            structure.remove_link(name)
            removed.append(name)
        return removed
