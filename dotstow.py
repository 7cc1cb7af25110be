#!/usr/bin/env python3
"""
Ubuntu Dotfiles Installer (dotstow)

Installs zsh, starship and alacritty, backs up whatever would collide with the
bundled configuration, links the bundle into $HOME with GNU Stow and undoes
all of it again on request.
"""
from __future__ import annotations

import argparse
import json
import os
import re
import shutil
import stat
import subprocess
import sys
import tempfile
import time
import zipfile
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple


@dataclass
class ManagedTarget:
    relative_path: str
    group: str
    directory: bool = False


@dataclass
class LinkGroup:
    name: str
    package: str
    mandatory: bool = True


# Paths the bundle owns, relative to the user's home directory. Order matters:
# conflicts are reported, backed up and removed in this order.
MANAGED_TARGETS: List[ManagedTarget] = [
    ManagedTarget(".zshrc", "shell"),
    ManagedTarget(".zshenv", "shell"),
    ManagedTarget(".zprofile", "shell"),
    ManagedTarget(".config/starship.toml", "prompt"),
    ManagedTarget(".config/alacritty", "terminal", directory=True),
    ManagedTarget(".config/alacritty/alacritty.yml", "terminal"),
    ManagedTarget(".config/alacritty/alacritty.toml", "terminal"),
]

LINK_GROUPS: List[LinkGroup] = [
    LinkGroup("shell", "zsh"),
    LinkGroup("prompt", "starship"),
    LinkGroup("terminal", "alacritty"),
]

BACKUP_PREFIX = ".dotfiles_backup_"
BACKUP_TIME_FORMAT = "%Y%m%d_%H%M%S"
MANIFEST_NAME = ".dotstow_manifest.json"

DEFAULT_DOTFILES_DIR = Path(__file__).resolve().parent / "dotfiles"
ERROR_LOG_DIR = Path("~/.dotstow").expanduser()

STARSHIP_INSTALL_URL = "https://starship.rs/install.sh"
ZOXIDE_INSTALL_URL = "https://raw.githubusercontent.com/ajeetdsouza/zoxide/main/install.sh"
EZA_KEY_URL = "https://raw.githubusercontent.com/eza-community/eza/main/deb.asc"
EZA_KEYRING = "/etc/apt/keyrings/gierens.gpg"
EZA_SOURCES_LIST = "/etc/apt/sources.list.d/gierens.list"
EZA_REPO_LINE = f"deb [signed-by={EZA_KEYRING}] http://deb.gierens.de stable main"

FONT_NAME = "JetBrains Mono"
FONT_URL = "https://github.com/JetBrains/JetBrainsMono/releases/download/v2.304/JetBrainsMono-2.304.zip"
FONT_DIR = ".local/share/fonts"

NVIM_DIRS: Dict[str, str] = {
    ".config/nvim": "nvim_config",
    ".local/share/nvim": "nvim_data",
    ".local/state/nvim": "nvim_state",
    ".cache/nvim": "nvim_cache",
}
NVIM_BACKUP_PREFIX = ".nvim_backup_"

# Probe kinds.
ABSENT = "absent"
FILE = "file"
DIRECTORY = "directory"
SYMLINK = "symlink"

# Conflict kinds.
REGULAR = "regular"
FOREIGN_LINK = "foreign-symlink"
DANGLING_LINK = "dangling-symlink"
UNREADABLE = "unreadable"

# Run statuses.
COMPLETED = "completed"
DECLINED = "declined"
FAILED = "failed"


class DotstowError(Exception):
    """Base class for every failure dotstow reports to the user."""


class ProbeError(DotstowError):
    def __init__(self, path: Path, reason: object) -> None:
        super().__init__(f"Cannot inspect {path}: {reason}")
        self.path = path


class BackupError(DotstowError):
    pass


class BackupCopyError(DotstowError):
    def __init__(self, path: Path, reason: object) -> None:
        super().__init__(f"Could not back up {path}: {reason}")
        self.path = path


class RemovalError(DotstowError):
    pass


class LinkGroupError(DotstowError):
    def __init__(self, group: LinkGroup, reason: str) -> None:
        super().__init__(f"Failed to stow {group.package}: {reason}")
        self.group = group


class SelectionError(DotstowError):
    pass


class ShellChangeError(DotstowError):
    def __init__(self, message: str, remediation: Optional[str] = None) -> None:
        super().__init__(message)
        self.remediation = remediation


class InstallError(DotstowError):
    pass


def info(message: str) -> None:
    print(f"[+] {message}")


def warn(message: str) -> None:
    print(f"[!] {message}")


def error(message: str) -> None:
    print(f"[x] {message}", file=sys.stderr)


def debug(message: str, verbose: bool) -> None:
    if verbose:
        print(f"[debug] {message}")


def header(title: str) -> None:
    rule = "=" * 51
    print(f"\n{rule}\n{title}\n{rule}\n")


def get_home() -> Path:
    """Allow overriding home for tests via DOTSTOW_HOME."""
    env_home = os.environ.get("DOTSTOW_HOME")
    return Path(env_home).expanduser() if env_home else Path.home()


def get_managed_root(value: Optional[str] = None) -> Path:
    raw = value or os.environ.get("DOTSTOW_DIR")
    root = Path(raw).expanduser() if raw else DEFAULT_DOTFILES_DIR
    return Path(os.path.abspath(root))


def format_size(num_bytes: int) -> str:
    units = ["B", "KB", "MB", "GB", "TB"]
    size = float(num_bytes)
    for unit in units:
        if size < 1024 or unit == units[-1]:
            return f"{size:.1f} {unit}"
        size /= 1024


def calculate_path_size(path: Path) -> int:
    """Recursively measure file/directory size in bytes without following links."""
    try:
        if path.is_symlink():
            return 0
        if path.is_file():
            return path.stat().st_size
    except FileNotFoundError:
        return 0

    total = 0
    for root, _dirs, files in os.walk(path, followlinks=False):
        root_path = Path(root)
        for name in files:
            file_path = root_path / name
            try:
                if not file_path.is_symlink():
                    total += file_path.stat().st_size
            except FileNotFoundError:
                continue
    return total


def load_os_release(path: Path = Path("/etc/os-release")) -> Dict[str, str]:
    data: Dict[str, str] = {}
    try:
        text = path.read_text()
    except OSError:
        return data
    for line in text.splitlines():
        if "=" in line:
            key, val = line.split("=", 1)
            data[key.lower()] = val.strip().strip('"')
    return data


def is_ubuntu(os_release: Optional[Dict[str, str]] = None) -> bool:
    data = load_os_release() if os_release is None else os_release
    ident = data.get("id", "").lower()
    name = data.get("name", "").lower()
    return ident == "ubuntu" or "ubuntu" in name


def run_command(cmd: Sequence[str], verbose: bool = False) -> List[str]:
    debug(f"Running command: {' '.join(cmd)}", verbose)
    try:
        result = subprocess.run(
            cmd, capture_output=True, text=True, check=False
        )
    except FileNotFoundError:
        debug(f"Command not found: {cmd[0]}", verbose)
        return []
    if result.returncode != 0 and verbose:
        warn(f"Command {' '.join(cmd)} returned {result.returncode}: {result.stderr.strip()}")
    return [line.strip() for line in result.stdout.splitlines() if line.strip()]


def run_pipeline(producer: Sequence[str], consumer: Sequence[str], verbose: bool = False) -> int:
    """Run ``producer | consumer`` and return the first non-zero exit code."""
    debug(f"Running pipeline: {' '.join(producer)} | {' '.join(consumer)}", verbose)
    try:
        fetch_proc = subprocess.Popen(producer, stdout=subprocess.PIPE)
    except FileNotFoundError as exc:
        raise InstallError(f"{producer[0]} not found") from exc
    try:
        run_proc = subprocess.Popen(consumer, stdin=fetch_proc.stdout)
    except FileNotFoundError as exc:
        fetch_proc.kill()
        fetch_proc.wait()
        raise InstallError(f"{consumer[0]} not found") from exc
    # Let the producer see SIGPIPE if the consumer exits early.
    fetch_proc.stdout.close()
    run_proc.wait()
    fetch_proc.wait()
    return fetch_proc.returncode or run_proc.returncode


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

Confirm = Callable[[str, bool], bool]
Ask = Callable[[str], str]


def prompt_confirm(message: str, default: bool = False) -> bool:
    suffix = "(Y/n)" if default else "(y/N)"
    try:
        raw = input(f"{message} {suffix}: ").strip().lower()
    except EOFError:
        return False
    if not raw:
        return default
    return raw in ("y", "yes")


def prompt_text(message: str) -> str:
    try:
        return input(message)
    except EOFError:
        return ""


def always_yes(message: str, default: bool = False) -> bool:
    return True


# ---------------------------------------------------------------------------
# Probe and conflict scan
# ---------------------------------------------------------------------------

@dataclass
class PathProbe:
    kind: str
    target: Optional[str] = None
    dangling: bool = False


@dataclass
class ConflictRecord:
    target: ManagedTarget
    path: Path
    kind: str
    foreign_target: Optional[str] = None


def probe(path: Path) -> PathProbe:
    """Classify ``path`` without following it if it is a symlink."""
    try:
        st = os.lstat(path)
    except (FileNotFoundError, NotADirectoryError):
        return PathProbe(ABSENT)
    except PermissionError as exc:
        raise ProbeError(path, exc) from exc
    if stat.S_ISLNK(st.st_mode):
        try:
            target = os.readlink(path)
        except PermissionError as exc:
            raise ProbeError(path, exc) from exc
        return PathProbe(SYMLINK, target=target, dangling=not os.path.exists(path))
    if stat.S_ISDIR(st.st_mode):
        return PathProbe(DIRECTORY)
    return PathProbe(FILE)


def points_into(link: Path, link_target: str, managed_root: Path, canonical: bool = False) -> bool:
    """Tell whether a symlink at ``link`` with target ``link_target`` belongs to the bundle.

    The default is an approximate check: the managed root must appear as a
    substring of the link target, made absolute relative to the link's
    directory but otherwise taken literally. ``canonical`` resolves both sides
    and requires a real path prefix instead.
    """
    absolute_target = os.path.normpath(os.path.join(str(link.parent), link_target))
    if canonical:
        resolved = Path(absolute_target).resolve()
        root = managed_root.resolve()
        return resolved == root or root in resolved.parents
    return str(managed_root) in absolute_target


def scan_conflicts(
    targets: Sequence[ManagedTarget],
    managed_root: Path,
    home: Path,
    canonical: bool = False,
) -> List[ConflictRecord]:
    conflicts: List[ConflictRecord] = []
    linked_dirs: List[Path] = []
    for target in targets:
        path = home / target.relative_path
        # Children of a symlinked directory belong to whatever the link points at.
        if any(parent in path.parents for parent in linked_dirs):
            continue
        try:
            found = probe(path)
        except ProbeError as exc:
            warn(f"{exc}; treating it as a conflict")
            conflicts.append(ConflictRecord(target, path, UNREADABLE))
            continue

        if found.kind == FILE:
            conflicts.append(ConflictRecord(target, path, REGULAR))
        elif found.kind == SYMLINK:
            if target.directory:
                linked_dirs.append(path)
            if target.directory and found.dangling:
                conflicts.append(ConflictRecord(target, path, DANGLING_LINK, found.target))
            elif not points_into(path, found.target or "", managed_root, canonical):
                conflicts.append(ConflictRecord(target, path, FOREIGN_LINK, found.target))
    return conflicts


def detect_installed(
    targets: Sequence[ManagedTarget],
    managed_root: Path,
    home: Path,
    canonical: bool = False,
) -> List[Tuple[Path, str]]:
    """Return managed paths that are currently symlinks into the bundle."""
    found: List[Tuple[Path, str]] = []
    for target in targets:
        path = home / target.relative_path
        try:
            result = probe(path)
        except ProbeError as exc:
            warn(str(exc))
            continue
        if result.kind == SYMLINK and points_into(path, result.target or "", managed_root, canonical):
            found.append((path, result.target or ""))
    return found


def describe_conflict(record: ConflictRecord, home: Path) -> str:
    rel = record.path.relative_to(home)
    if record.kind == REGULAR:
        return f"~/{rel} (existing file)"
    if record.kind == UNREADABLE:
        return f"~/{rel} (unreadable)"
    if record.kind == DANGLING_LINK:
        return f"~/{rel} -> {record.foreign_target} (broken link)"
    return f"~/{rel} -> {record.foreign_target}"


# ---------------------------------------------------------------------------
# Backup sets
# ---------------------------------------------------------------------------

@dataclass
class BackupResult:
    path: Path
    copied: List[Path] = field(default_factory=list)
    failed: List[Tuple[Path, str]] = field(default_factory=list)
    removed: List[Path] = field(default_factory=list)


@dataclass
class BackupSet:
    path: Path
    created: datetime

    @property
    def name(self) -> str:
        return self.path.name

    def files(self) -> List[str]:
        """Home-relative paths of every file stored in this backup."""
        found: List[str] = []
        for item in self.path.rglob("*"):
            if not item.is_file():
                continue
            rel = item.relative_to(self.path).as_posix()
            if rel == MANIFEST_NAME:
                continue
            found.append(rel)
        return sorted(found)

    def manifest(self) -> Dict[str, Dict[str, object]]:
        manifest_path = self.path / MANIFEST_NAME
        if not manifest_path.exists():
            return {}
        try:
            data = json.loads(manifest_path.read_text())
        except (OSError, ValueError):
            warn(f"Failed to parse {manifest_path}; restoring files only.")
            return {}
        return {entry["path"]: entry for entry in data.get("entries", [])}


def backup_dir_name(moment: datetime) -> str:
    return f"{BACKUP_PREFIX}{moment.strftime(BACKUP_TIME_FORMAT)}"


def parse_backup_time(name: str) -> Optional[datetime]:
    if not name.startswith(BACKUP_PREFIX):
        return None
    try:
        return datetime.strptime(name[len(BACKUP_PREFIX):], BACKUP_TIME_FORMAT)
    except ValueError:
        return None


def create_backup_dir(home: Path, now: Optional[datetime] = None, prefix: str = BACKUP_PREFIX) -> Path:
    """Create a fresh timestamped directory under ``home``.

    The timestamp is moved forward one second at a time until the name is
    free, so two runs inside the same second still get distinct directories.
    """
    moment = (now or datetime.now()).replace(microsecond=0)
    path = home / f"{prefix}{moment.strftime(BACKUP_TIME_FORMAT)}"
    while os.path.lexists(path):
        moment += timedelta(seconds=1)
        path = home / f"{prefix}{moment.strftime(BACKUP_TIME_FORMAT)}"
    try:
        path.mkdir(parents=True)
    except OSError as exc:
        raise BackupError(f"Could not create backup directory {path}: {exc}") from exc
    return path


def copy_dereferenced(source: Path, dest: Path) -> bool:
    """Copy the content behind ``source`` to ``dest``. Returns False if there is none."""
    if not source.exists():
        return False
    dest.parent.mkdir(parents=True, exist_ok=True)
    if source.is_dir():
        shutil.copytree(source, dest, symlinks=False, ignore_dangling_symlinks=True, dirs_exist_ok=True)
    else:
        shutil.copy2(source, dest)
    return True


def remove_path(path: Path) -> None:
    if path.is_symlink() or not path.is_dir():
        path.unlink(missing_ok=True)
    else:
        shutil.rmtree(path)


def write_backup_manifest(
    backup_root: Path,
    conflicts: Sequence[ConflictRecord],
    home: Path,
    copied: Sequence[Path],
) -> None:
    manifest = {
        "timestamp": int(time.time()),
        "entries": [
            {
                "path": record.path.relative_to(home).as_posix(),
                "group": record.target.group,
                "kind": record.kind,
                "link_target": record.foreign_target,
                "copied": record.path in copied,
            }
            for record in conflicts
        ],
    }
    (backup_root / MANIFEST_NAME).write_text(json.dumps(manifest, indent=2))


def backup_conflicts(
    conflicts: Sequence[ConflictRecord],
    home: Path,
    now: Optional[datetime] = None,
    verbose: bool = False,
) -> Optional[BackupResult]:
    """Copy every conflicting item into a new backup set, then remove the originals.

    Copying is best effort: an item that cannot be copied is reported and
    still removed. Removal is not: the first item that cannot be removed
    raises ``RemovalError``.
    """
    if not conflicts:
        return None
    result = BackupResult(path=create_backup_dir(home, now))
    info(f"Backing up to {result.path}")

    for record in conflicts:
        dest = result.path / record.path.relative_to(home)
        try:
            if copy_dereferenced(record.path, dest):
                result.copied.append(record.path)
                debug(f"Backed up {record.path} -> {dest}", verbose)
            else:
                debug(f"Nothing to copy for {record.path}", verbose)
        except OSError as exc:
            failure = BackupCopyError(record.path, exc)
            result.failed.append((record.path, str(exc)))
            warn(f"{failure}. It will be removed anyway!")

    try:
        write_backup_manifest(result.path, conflicts, home, result.copied)
    except OSError as exc:
        warn(f"Could not write backup manifest: {exc}")

    for record in conflicts:
        try:
            remove_path(record.path)
        except OSError as exc:
            raise RemovalError(
                f"Could not remove {record.path} after backing it up: {exc}. "
                f"Remove it manually with: rm -rf '{record.path}'"
            ) from exc
        result.removed.append(record.path)
        debug(f"Removed {record.path}", verbose)

    info(f"Backup created at: {result.path}")
    if result.failed:
        warn(f"{len(result.failed)} item(s) could not be backed up and are gone:")
        for path, reason in result.failed:
            print(f"  - {path}: {reason}")
    return result


class BackupStore:
    """Backup sets found directly under the home directory, ordered by name.

    Iterating scans the filesystem again, so the store can be walked any
    number of times and always reflects what is on disk.
    """

    def __init__(self, home: Path) -> None:
        self.home = home

    def __iter__(self) -> Iterator[BackupSet]:
        if not self.home.is_dir():
            return
        candidates = sorted(self.home.glob(f"{BACKUP_PREFIX}*"), key=lambda p: p.name)
        for path in candidates:
            created = parse_backup_time(path.name)
            if created is None or not path.is_dir():
                continue
            yield BackupSet(path, created)

    def list(self) -> List[BackupSet]:
        return list(self)

    def select(self, raw: str) -> Optional[BackupSet]:
        """Pick a backup by its 1-based position. ``"0"`` means skip."""
        value = raw.strip()
        if value == "0":
            return None
        if not re.fullmatch(r"[0-9]+", value):
            raise SelectionError(f"Invalid backup number: {raw!r}")
        backups = self.list()
        index = int(value)
        if not 1 <= index <= len(backups):
            raise SelectionError(f"Invalid backup number: {index} (choose 1-{len(backups)})")
        return backups[index - 1]

    def delete(self, backup: BackupSet) -> None:
        shutil.rmtree(backup.path)


def print_backups(backups: Sequence[BackupSet]) -> None:
    print(f"Found {len(backups)} backup(s):")
    for number, backup in enumerate(backups, start=1):
        print(f"  {number}) {backup.path} ({backup.created:%Y-%m-%d %H:%M:%S})")
        for rel in backup.files():
            print(f"     - {rel}")
    print()


@dataclass
class RestoreResult:
    restored: List[Path] = field(default_factory=list)
    relinked: List[Path] = field(default_factory=list)
    failed: List[Tuple[Path, str]] = field(default_factory=list)


def clear_destination(dest: Path) -> None:
    """Make room at ``dest`` without ever writing through a symlink."""
    if dest.is_symlink():
        dest.unlink()
    elif dest.is_dir():
        # Only an empty leftover directory may be replaced.
        dest.rmdir()


def linked_ancestor(dest: Path, home: Path) -> Optional[Path]:
    """Return the first directory between ``home`` and ``dest`` that is a symlink."""
    try:
        parts = dest.parent.relative_to(home).parts
    except ValueError:
        return None
    current = home
    for part in parts:
        current = current / part
        if current.is_symlink():
            return current
    return None


def restore_backup(backup: BackupSet, home: Path, verbose: bool = False) -> RestoreResult:
    """Put the content of ``backup`` back under ``home``.

    Items the backup recorded as symlinks are recreated as the same symlinks;
    everything else is copied file by file. A foreign link whose target has
    since disappeared gets the saved copy instead. Nothing is written below a
    directory that is still a symlink. A failing item does not stop the
    others.
    """
    result = RestoreResult()
    links: Dict[str, str] = {}
    for rel, entry in backup.manifest().items():
        link_target = entry.get("link_target")
        if entry.get("kind") not in (FOREIGN_LINK, DANGLING_LINK) or not link_target:
            continue
        dest = home / rel
        target_gone = not os.path.exists(os.path.join(dest.parent, str(link_target)))
        if entry.get("kind") == FOREIGN_LINK and target_gone and os.path.lexists(backup.path / rel):
            warn(f"~/{rel} linked to {link_target}, which no longer exists; restoring the saved copy instead")
            continue
        links[rel] = str(link_target)

    def blocked(rel: str, dest: Path) -> bool:
        ancestor = linked_ancestor(dest, home)
        if ancestor is None:
            return False
        reason = f"{ancestor} is still a symlink to {os.readlink(ancestor)}"
        warn(f"Not restoring ~/{rel}: {reason}")
        result.failed.append((dest, reason))
        return True

    for rel, link_target in links.items():
        dest = home / rel
        if blocked(rel, dest):
            continue
        info(f"Restoring link ~/{rel} -> {link_target}")
        try:
            clear_destination(dest)
            dest.parent.mkdir(parents=True, exist_ok=True)
            os.symlink(link_target, dest)
        except OSError as exc:
            warn(f"Failed to restore ~/{rel}: {exc}")
            result.failed.append((dest, str(exc)))
            continue
        result.relinked.append(dest)

    for rel in backup.files():
        if any(rel == link or rel.startswith(f"{link}/") for link in links):
            continue
        dest = home / rel
        if blocked(rel, dest):
            continue
        info(f"Restoring ~/{rel}...")
        try:
            if dest.is_symlink():
                dest.unlink()
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(backup.path / rel, dest)
        except OSError as exc:
            warn(f"Failed to restore ~/{rel}: {exc}")
            result.failed.append((dest, str(exc)))
            continue
        result.restored.append(dest)
        debug(f"Restored {backup.path / rel} -> {dest}", verbose)
    return result


# ---------------------------------------------------------------------------
# Linking with GNU Stow
# ---------------------------------------------------------------------------

@dataclass
class LinkOutcome:
    group: LinkGroup
    ok: bool
    reason: str = ""


class StowRunner:
    def __init__(self, verbose: bool = False) -> None:
        self.verbose = verbose

    def available(self) -> bool:
        return shutil.which("stow") is not None

    def command(self, managed_root: Path, package: str, home: Path, delete: bool = False) -> List[str]:
        cmd = ["stow"]
        if delete:
            cmd.append("-D")
        return cmd + ["-v", "-d", str(managed_root), "-t", str(home), package]

    def stow(self, managed_root: Path, package: str, home: Path) -> Tuple[bool, str]:
        return self._run(self.command(managed_root, package, home))

    def unstow(self, managed_root: Path, package: str, home: Path) -> Tuple[bool, str]:
        return self._run(self.command(managed_root, package, home, delete=True))

    def _run(self, cmd: List[str]) -> Tuple[bool, str]:
        debug(f"Running: {' '.join(cmd)}", self.verbose)
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=False)
        except FileNotFoundError:
            return False, "stow not found"
        if result.returncode != 0:
            return False, result.stderr.strip() or f"stow exited with code {result.returncode}"
        debug(result.stderr.strip(), self.verbose)
        return True, ""


def apply_groups(
    groups: Sequence[LinkGroup],
    managed_root: Path,
    home: Path,
    runner: StowRunner,
    strict: bool = False,
) -> List[LinkOutcome]:
    """Stow each group on its own.

    With ``strict`` the first failing group raises ``LinkGroupError``;
    otherwise every group is attempted and failures are only reported.
    """
    outcomes: List[LinkOutcome] = []
    for group in groups:
        package_dir = managed_root / group.package
        if not package_dir.is_dir():
            ok, reason = False, f"package directory {package_dir} not found"
        else:
            info(f"Stowing {group.name} configuration ({group.package})...")
            ok, reason = runner.stow(managed_root, group.package, home)
        outcomes.append(LinkOutcome(group, ok, reason))
        if ok:
            info(f"Linked {group.package}")
            continue
        warn(f"Failed to stow {group.package}: {reason}")
        print(f"  You can retry manually with: {' '.join(runner.command(managed_root, group.package, home))}")
        if strict:
            raise LinkGroupError(group, reason)
    return outcomes


def verify_group(group: LinkGroup, managed_root: Path, home: Path) -> List[Path]:
    """Return destinations that do not resolve to their file in the bundle."""
    package_dir = managed_root / group.package
    problems: List[Path] = []
    if not package_dir.is_dir():
        return problems
    for source in sorted(package_dir.rglob("*")):
        if source.is_dir() and not source.is_symlink():
            continue
        dest = home / source.relative_to(package_dir)
        if not os.path.lexists(dest) or dest.resolve() != source.resolve():
            problems.append(dest)
    return problems


def unlink_group(
    group: LinkGroup,
    targets: Sequence[ManagedTarget],
    managed_root: Path,
    home: Path,
    runner: StowRunner,
    canonical: bool = False,
) -> bool:
    """Remove the links of one group. Falls back to deleting known links without stow."""
    if runner.available():
        info(f"Unstowing {group.name} configuration ({group.package})...")
        ok, reason = runner.unstow(managed_root, group.package, home)
        if not ok:
            warn(f"Failed to unstow {group.package} (may not be stowed): {reason}")
        return ok

    removed_all = True
    for target in targets:
        if target.group != group.name:
            continue
        path = home / target.relative_path
        try:
            found = probe(path)
        except ProbeError as exc:
            warn(str(exc))
            continue
        if found.kind != SYMLINK:
            continue
        if not points_into(path, found.target or "", managed_root, canonical):
            warn(f"Leaving ~/{target.relative_path}; it links to {found.target}, not the dotfiles")
            continue
        info(f"Removing ~/{target.relative_path} symlink...")
        try:
            path.unlink()
        except OSError as exc:
            warn(f"Failed to remove {path}: {exc}")
            print(f"  Remove it manually with: rm '{path}'")
            removed_all = False
    return removed_all


def setup_directories(home: Path) -> None:
    for rel in (".config", ".config/alacritty"):
        path = home / rel
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise InstallError(f"Could not create {path}: {exc}. Create it with: mkdir -p '{path}'") from exc


# ---------------------------------------------------------------------------
# Packages, fonts and the default shell
# ---------------------------------------------------------------------------

@dataclass
class InstallStep:
    name: str
    command: str
    packages: List[str] = field(default_factory=list)
    mandatory: bool = True
    script_url: Optional[str] = None
    script_shell: List[str] = field(default_factory=lambda: ["sh"])
    description: str = ""


CORE_STEPS: List[InstallStep] = [
    InstallStep("ZSH", "zsh", ["zsh"]),
    InstallStep(
        "Starship Prompt",
        "starship",
        script_url=STARSHIP_INSTALL_URL,
        script_shell=["sh", "-s", "--", "-y"],
    ),
    InstallStep("Alacritty Terminal", "alacritty", ["alacritty"], mandatory=False),
]

STOW_STEP = InstallStep("GNU Stow", "stow", ["stow"])

OPTIONAL_TOOLS: List[InstallStep] = [
    InstallStep("eza", "eza", ["eza"], mandatory=False, description="Modern replacement for ls"),
    InstallStep("fzf", "fzf", ["fzf"], mandatory=False, description="Fuzzy finder"),
    InstallStep("bat", "bat", ["bat"], mandatory=False, description="Better cat with syntax highlighting"),
    InstallStep(
        "zoxide",
        "zoxide",
        mandatory=False,
        script_url=ZOXIDE_INSTALL_URL,
        script_shell=["bash"],
        description="Smarter cd command",
    ),
    InstallStep("ripgrep", "rg", ["ripgrep"], mandatory=False, description="Fast grep alternative"),
]


class AptInstaller:
    def __init__(self, verbose: bool = False) -> None:
        self.verbose = verbose
        self.updated = False

    def has_command(self, name: str) -> bool:
        return shutil.which(name) is not None

    def is_installed(self, package: str) -> bool:
        try:
            result = subprocess.run(
                ["dpkg", "-s", package],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                check=False,
            )
        except FileNotFoundError:
            return False
        return result.returncode == 0

    def update(self, force: bool = False) -> None:
        if self.updated and not force:
            return
        self.run_checked(["sudo", "apt", "update"])
        self.updated = True

    def install(self, packages: Sequence[str]) -> None:
        self.update()
        self.run_checked(["sudo", "apt", "install", "-y", *packages])

    def remove(self, packages: Sequence[str]) -> None:
        self.run_checked(["sudo", "apt", "remove", "-y", *packages])
        self.run_checked(["sudo", "apt", "autoremove", "-y"])

    def run_checked(self, cmd: List[str]) -> None:
        debug(f"Running: {' '.join(cmd)}", self.verbose)
        try:
            result = subprocess.run(cmd, check=False)
        except FileNotFoundError as exc:
            raise InstallError(f"{cmd[0]} not found") from exc
        if result.returncode != 0:
            raise InstallError(f"'{' '.join(cmd)}' exited with code {result.returncode}")


def run_install_script(url: str, shell: Sequence[str], verbose: bool = False) -> None:
    code = run_pipeline(["curl", "-sS", url], shell, verbose)
    if code != 0:
        raise InstallError(f"Install script {url} exited with code {code}")


def version_line(command: str) -> Optional[str]:
    lines = run_command([command, "--version"])
    return lines[0] if lines else None


def install_step(step: InstallStep, installer: AptInstaller) -> bool:
    """Install one package or tool. Optional steps only warn on failure."""
    if installer.has_command(step.command):
        warn(f"{step.name} is already installed")
        version = version_line(step.command)
        if version:
            print(f"  {version}")
        return True
    info(f"Installing {step.name}...")
    try:
        if step.script_url:
            run_install_script(step.script_url, step.script_shell, installer.verbose)
        else:
            installer.install(step.packages)
    except InstallError as exc:
        if step.mandatory:
            raise InstallError(f"Failed to install {step.name}: {exc}") from exc
        warn(f"Failed to install {step.name}: {exc}")
        if step.packages:
            print(f"  You can install it later with: sudo apt install {' '.join(step.packages)}")
        return False
    info(f"{step.name} installed successfully")
    return True


def setup_eza_repository(installer: AptInstaller) -> None:
    installer.install(["gpg"])
    installer.run_checked(["sudo", "mkdir", "-p", str(Path(EZA_KEYRING).parent)])
    code = run_pipeline(
        ["wget", "-qO-", EZA_KEY_URL],
        ["sudo", "gpg", "--dearmor", "--yes", "-o", EZA_KEYRING],
        installer.verbose,
    )
    if code != 0:
        raise InstallError(f"Could not import the eza signing key (exit code {code})")
    result = subprocess.run(
        ["sudo", "tee", EZA_SOURCES_LIST],
        input=f"{EZA_REPO_LINE}\n",
        text=True,
        stdout=subprocess.DEVNULL,
        check=False,
    )
    if result.returncode != 0:
        raise InstallError(f"Could not write {EZA_SOURCES_LIST}")
    installer.run_checked(["sudo", "chmod", "644", EZA_KEYRING, EZA_SOURCES_LIST])
    installer.update(force=True)


def link_batcat(home: Path) -> None:
    """Ubuntu ships bat as ``batcat``; expose it as ``bat`` in ~/.local/bin."""
    batcat = shutil.which("batcat")
    if not batcat:
        return
    link = home / ".local/bin/bat"
    link.parent.mkdir(parents=True, exist_ok=True)
    if link.is_symlink() or link.exists():
        link.unlink()
    link.symlink_to(batcat)


def install_optional_tools(installer: AptInstaller, confirm: Confirm, home: Path) -> List[str]:
    header("Installing Optional Tools")
    print("The following tools enhance your terminal experience:")
    for tool in OPTIONAL_TOOLS:
        print(f"  - {tool.name}: {tool.description}")
    print()
    if not confirm("Do you want to install these optional tools?", False):
        info("Skipping optional tools installation")
        return []

    installed: List[str] = []
    try:
        installer.update()
    except InstallError as exc:
        warn(f"Package index update failed: {exc}; skipping optional tools")
        return installed
    for tool in OPTIONAL_TOOLS:
        if tool.name == "bat" and installer.has_command("batcat"):
            link_batcat(home)
            continue
        if tool.name == "eza" and not installer.has_command("eza"):
            try:
                setup_eza_repository(installer)
            except InstallError as exc:
                warn(f"Failed to set up the eza repository: {exc}")
                continue
        if install_step(tool, installer):
            installed.append(tool.name)
            if tool.name == "bat":
                link_batcat(home)
    return installed


class FontInstaller:
    def __init__(self, home: Path, url: str = FONT_URL, verbose: bool = False) -> None:
        self.home = home
        self.url = url
        self.verbose = verbose
        self.font_dir = home / FONT_DIR

    def is_installed(self) -> bool:
        needle = FONT_NAME.lower()
        return any(needle in line.lower() for line in run_command(["fc-list"], self.verbose))

    def fetch(self, workdir: Path) -> Path:
        archive = workdir / self.url.rsplit("/", 1)[-1]
        cmd = ["wget", "-q", "-O", str(archive), self.url]
        debug(f"Running: {' '.join(cmd)}", self.verbose)
        try:
            result = subprocess.run(cmd, check=False)
        except FileNotFoundError as exc:
            raise InstallError("wget not found") from exc
        if result.returncode != 0:
            raise InstallError(f"Download of {self.url} failed with code {result.returncode}")
        return archive

    def extract(self, archive: Path, workdir: Path) -> List[Path]:
        """Pull the TTF files out of the release archive."""
        extracted: List[Path] = []
        out_dir = workdir / "fonts"
        out_dir.mkdir(parents=True, exist_ok=True)
        try:
            with zipfile.ZipFile(archive) as bundle:
                for member in bundle.namelist():
                    if "/ttf/" not in f"/{member}" or not member.lower().endswith(".ttf"):
                        continue
                    dest = out_dir / Path(member).name
                    dest.write_bytes(bundle.read(member))
                    extracted.append(dest)
        except zipfile.BadZipFile as exc:
            raise InstallError(f"{archive} is not a valid zip archive") from exc
        return sorted(extracted)

    def install(self, files: Sequence[Path]) -> List[Path]:
        self.font_dir.mkdir(parents=True, exist_ok=True)
        installed: List[Path] = []
        for source in files:
            dest = self.font_dir / source.name
            shutil.copy2(source, dest)
            installed.append(dest)
        run_command(["fc-cache", "-f"], self.verbose)
        return installed

    def run(self) -> bool:
        header(f"Installing {FONT_NAME} Font")
        if self.is_installed():
            warn(f"{FONT_NAME} font is already installed")
            return True
        info(f"Installing {FONT_NAME} font...")
        try:
            with tempfile.TemporaryDirectory() as tmp:
                workdir = Path(tmp)
                files = self.extract(self.fetch(workdir), workdir)
                if not files:
                    raise InstallError("no TTF files found in the font archive")
                self.install(files)
        except (InstallError, OSError) as exc:
            warn(f"Failed to install {FONT_NAME}: {exc}")
            return False
        info(f"{FONT_NAME} font installed successfully")
        return True


class ShellChanger:
    def __init__(self, shells_file: Path = Path("/etc/shells"), verbose: bool = False) -> None:
        self.shells_file = shells_file
        self.verbose = verbose

    def current(self) -> str:
        return os.environ.get("SHELL", "")

    def locate(self, name: str) -> Optional[str]:
        return shutil.which(name)

    def is_registered(self, path: str) -> bool:
        try:
            lines = self.shells_file.read_text().splitlines()
        except OSError:
            return False
        return path in (line.strip() for line in lines)

    def register(self, path: str) -> None:
        cmd = ["sudo", "tee", "-a", str(self.shells_file)]
        debug(f"Running: {' '.join(cmd)}", self.verbose)
        try:
            result = subprocess.run(
                cmd, input=f"{path}\n", text=True, stdout=subprocess.DEVNULL, check=False
            )
        except FileNotFoundError as exc:
            raise ShellChangeError("sudo not found", f"echo {path} | sudo tee -a {self.shells_file}") from exc
        if result.returncode != 0:
            raise ShellChangeError(
                f"Could not add {path} to {self.shells_file}",
                f"echo {path} | sudo tee -a {self.shells_file}",
            )

    def change(self, name: str) -> bool:
        """Make ``name`` the login shell. Returns False when it already is."""
        path = self.locate(name)
        if not path:
            raise ShellChangeError(f"{name} executable not found", f"sudo apt install {name}")
        if self.current() == path:
            return False
        if not self.is_registered(path):
            info(f"Registering {path} in {self.shells_file}...")
            self.register(path)
        try:
            result = subprocess.run(["chsh", "-s", path], check=False)
        except FileNotFoundError as exc:
            raise ShellChangeError("chsh not found", f"chsh -s {path}") from exc
        if result.returncode != 0:
            raise ShellChangeError(f"chsh exited with code {result.returncode}", f"chsh -s {path}")
        return True


def switch_shell(changer: ShellChanger, name: str) -> None:
    try:
        changed = changer.change(name)
    except ShellChangeError as exc:
        error(f"Failed to change default shell: {exc}")
        if exc.remediation:
            info(f"You can manually change it later with: {exc.remediation}")
        return
    if changed:
        info(f"Default shell changed to {name}")
        warn("Please log out and log back in for the change to take effect")
    else:
        warn(f"{name} is already your default shell")


# ---------------------------------------------------------------------------
# Workflows
# ---------------------------------------------------------------------------

@dataclass
class RunReport:
    status: str
    message: str = ""
    backup: Optional[BackupResult] = None
    links: List[LinkOutcome] = field(default_factory=list)
    restore: Optional[RestoreResult] = None

    @property
    def exit_code(self) -> int:
        return 1 if self.status == FAILED else 0


class InstallWorkflow:
    def __init__(
        self,
        managed_root: Path,
        home: Path,
        confirm: Confirm = prompt_confirm,
        installer: Optional[AptInstaller] = None,
        runner: Optional[StowRunner] = None,
        fonts: Optional[FontInstaller] = None,
        shell: Optional[ShellChanger] = None,
        strict: bool = False,
        canonical: bool = False,
        install_packages: bool = True,
        verbose: bool = False,
    ) -> None:
        self.managed_root = managed_root
        self.home = home
        self.confirm = confirm
        self.installer = installer or AptInstaller(verbose)
        self.runner = runner or StowRunner(verbose)
        self.fonts = fonts or FontInstaller(home, verbose=verbose)
        self.shell = shell or ShellChanger(verbose=verbose)
        self.strict = strict
        self.canonical = canonical
        self.install_packages = install_packages
        self.verbose = verbose

    def run(self) -> RunReport:
        header("Ubuntu Dotfiles Installation")
        print("This will install and configure:")
        print("  - ZSH (Z Shell)")
        print("  - Starship (Cross-shell prompt)")
        print("  - Alacritty (GPU-accelerated terminal emulator)")
        print(f"  - {FONT_NAME} (Font)")
        print("  - GNU Stow (Symlink manager)")
        print(f"  - Optional: {', '.join(tool.name for tool in OPTIONAL_TOOLS)}")
        print()
        if not self.confirm("Do you want to continue?", True):
            info("Installation cancelled")
            return RunReport(DECLINED, "Installation cancelled")
        if not is_ubuntu():
            warn("This tool is designed for Ubuntu. Continuing anyway...")
        if not self.managed_root.is_dir():
            error(f"Dotfiles directory not found: {self.managed_root}")
            return RunReport(FAILED, f"Dotfiles directory not found: {self.managed_root}")

        report = RunReport(COMPLETED)
        try:
            header("Checking For Conflicting Configurations")
            info(f"Dotfiles directory: {self.managed_root}")
            conflicts = scan_conflicts(MANAGED_TARGETS, self.managed_root, self.home, self.canonical)
            if conflicts:
                print("These existing items would block the dotfiles:")
                for record in conflicts:
                    print(f"  - {describe_conflict(record, self.home)}")
                print()
                if not self.confirm("Back them up and remove them?", True):
                    info("Installation cancelled; nothing was changed")
                    return RunReport(DECLINED, "Backup declined")
                header("Backing Up Existing Configurations")
                report.backup = backup_conflicts(conflicts, self.home, verbose=self.verbose)
            else:
                info("No existing configurations found to backup")

            if self.install_packages:
                self.install_all()

            header("Setting Up Directories")
            setup_directories(self.home)
            info("Directories created successfully")

            header("Applying Dotfiles with GNU Stow")
            report.links = apply_groups(
                LINK_GROUPS, self.managed_root, self.home, self.runner, self.strict
            )
        except DotstowError as exc:
            error(str(exc))
            report.status = FAILED
            report.message = str(exc)
            return report

        failed_mandatory = [o for o in report.links if not o.ok and o.group.mandatory]
        for outcome in report.links:
            if not outcome.ok:
                continue
            for dest in verify_group(outcome.group, self.managed_root, self.home):
                warn(f"{dest} is not linked into {self.managed_root}")
        if failed_mandatory:
            names = ", ".join(o.group.package for o in failed_mandatory)
            error(f"Dotfiles could not be applied for: {names}")
            report.status = FAILED
            report.message = f"Link groups failed: {names}"
            return report
        info("Dotfiles applied successfully")

        header("Setting ZSH as Default Shell")
        if self.confirm("Do you want to make ZSH your default shell?", True):
            switch_shell(self.shell, "zsh")
        else:
            info("Keeping current default shell")

        self.print_summary(report)
        return report

    def install_all(self) -> None:
        for step in CORE_STEPS:
            header(f"Installing {step.name}")
            install_step(step, self.installer)
        self.fonts.run()
        header(f"Installing {STOW_STEP.name}")
        install_step(STOW_STEP, self.installer)
        install_optional_tools(self.installer, self.confirm, self.home)

    def print_summary(self, report: RunReport) -> None:
        header("Installation Complete!")
        print("Next steps:")
        print("  1. Log out and log back in (or restart your terminal)")
        print("  2. Launch Alacritty from your applications menu")
        print("  3. Starship prompt will be automatically loaded in ZSH")
        print()
        if report.backup:
            print(f"Previous configuration saved in: {report.backup.path}")
            print("Run 'dotstow uninstall' to restore it later.")
            print()
        info("Enjoy your new terminal setup!")


class UninstallWorkflow:
    def __init__(
        self,
        managed_root: Path,
        home: Path,
        confirm: Confirm = prompt_confirm,
        ask: Ask = prompt_text,
        runner: Optional[StowRunner] = None,
        shell: Optional[ShellChanger] = None,
        canonical: bool = False,
        verbose: bool = False,
    ) -> None:
        self.managed_root = managed_root
        self.home = home
        self.confirm = confirm
        self.ask = ask
        self.runner = runner or StowRunner(verbose)
        self.shell = shell or ShellChanger(verbose=verbose)
        self.canonical = canonical
        self.verbose = verbose
        self.store = BackupStore(home)

    def run(self) -> RunReport:
        header("Ubuntu Dotfiles Uninstallation")
        print("This will:")
        print("  - Remove all dotfiles symlinks")
        print("  - Optionally restore previous configurations from backup")
        print("  - Optionally reset your default shell to bash")
        print()
        print("This will NOT uninstall packages like ZSH, Starship, or Alacritty")

        header("Detecting Installed Dotfiles")
        installed = detect_installed(MANAGED_TARGETS, self.managed_root, self.home, self.canonical)
        for path, link_target in installed:
            print(f"  ~/{path.relative_to(self.home)} -> {link_target}")
        print()

        if not installed:
            warn("No dotfiles found to uninstall")
            if self.confirm("Do you want to see available backups anyway?", False):
                return self.restore_step()
            return RunReport(DECLINED, "Nothing to uninstall")

        if not self.confirm("Do you want to continue with uninstallation?", False):
            info("Uninstallation cancelled")
            return RunReport(DECLINED, "Uninstallation cancelled")

        header("Removing Dotfiles Symlinks")
        if self.runner.available() and not self.managed_root.is_dir():
            error(f"Dotfiles directory not found: {self.managed_root}")
            return RunReport(FAILED, "Failed to remove dotfiles symlinks")
        if not self.runner.available():
            warn("GNU Stow is not installed, removing symlinks manually...")
        failed = [
            group.package
            for group in LINK_GROUPS
            if not unlink_group(group, MANAGED_TARGETS, self.managed_root, self.home, self.runner, self.canonical)
        ]
        if failed:
            error(f"Could not remove the links of: {', '.join(failed)}")
            warn("Skipping backup restore while dotfiles links may still be in place")
            return RunReport(FAILED, "Failed to remove dotfiles symlinks")
        info("Dotfiles symlinks removed")

        report = RunReport(COMPLETED)
        if self.store.list():
            if self.confirm("Do you want to restore a previous configuration?", False):
                restored = self.restore_step()
                report.restore = restored.restore
                if restored.status == FAILED:
                    report.status = FAILED
                    report.message = restored.message

        header("Reset Default Shell")
        if self.confirm("Do you want to reset your default shell to bash?", False):
            switch_shell(self.shell, "bash")
        else:
            info("Keeping current default shell")

        self.print_package_hints()
        header("Uninstallation Complete!")
        print("What was NOT removed:")
        print("  - ZSH, Starship, Alacritty, and other installed packages")
        print("  - Backup directories (unless you chose to delete them)")
        print()
        return report

    def restore_step(self) -> RunReport:
        header("Available Backups")
        backups = self.store.list()
        if not backups:
            info("No backup directories found")
            return RunReport(COMPLETED, "No backups")
        print_backups(backups)
        raw = self.ask("Enter backup number to restore (or 0 to skip): ")
        try:
            backup = self.store.select(raw)
        except SelectionError as exc:
            error(str(exc))
            return RunReport(FAILED, str(exc))
        if backup is None:
            info("Skipping backup restoration")
            return RunReport(COMPLETED, "Restore skipped")

        header("Restoring Backup")
        info(f"Restoring from: {backup.path}")
        result = restore_backup(backup, self.home, self.verbose)
        if result.failed:
            warn(f"{len(result.failed)} item(s) could not be restored")
        else:
            info("Backup restored successfully")
        print()
        if self.confirm("Do you want to delete this backup directory?", False):
            self.store.delete(backup)
            info("Backup directory deleted")
        return RunReport(COMPLETED, restore=result)

    def print_package_hints(self) -> None:
        header("Remove Installed Packages")
        print("Packages installed for the dotfiles are kept; they may be useful for other purposes.")
        print("If you want to remove them, you can do so manually:")
        print()
        print("  sudo apt remove zsh alacritty stow fzf bat ripgrep")
        print("  sudo apt remove eza  # if installed via apt")
        print("  rm -rf ~/.local/bin/zoxide  # if installed via curl")
        print("  rm -f ~/.local/bin/starship  # if installed via curl")
        print(f"  rm -rf ~/{FONT_DIR}/JetBrainsMono*")
        print("  fc-cache -f -v")
        print()


class NvimRemover:
    def __init__(
        self,
        home: Path,
        confirm: Confirm = prompt_confirm,
        ask: Ask = prompt_text,
        installer: Optional[AptInstaller] = None,
        verbose: bool = False,
    ) -> None:
        self.home = home
        self.confirm = confirm
        self.ask = ask
        self.installer = installer or AptInstaller(verbose)
        self.verbose = verbose

    def existing(self) -> List[Path]:
        return [self.home / rel for rel in NVIM_DIRS if (self.home / rel).is_dir()]

    def backup(self, dirs: Sequence[Path], now: Optional[datetime] = None) -> Path:
        backup_root = create_backup_dir(self.home, now, prefix=NVIM_BACKUP_PREFIX)
        for path in dirs:
            dest = backup_root / NVIM_DIRS[path.relative_to(self.home).as_posix()]
            shutil.copytree(path, dest, symlinks=True)
            debug(f"Copied {path} -> {dest}", self.verbose)
        return backup_root

    def remove(self, dirs: Sequence[Path]) -> None:
        for path in dirs:
            info(f"Removing {path}...")
            try:
                remove_path(path)
            except OSError as exc:
                raise RemovalError(f"Could not remove {path}: {exc}. Remove it with: rm -rf '{path}'") from exc

    def remove_package(self) -> None:
        header("Neovim Package Removal")
        if not self.installer.has_command("nvim"):
            info("Neovim is not installed")
            return
        if not self.confirm("Do you want to remove the Neovim package as well?", False):
            info("Keeping Neovim package installed")
            return
        try:
            if self.installer.is_installed("neovim"):
                self.installer.remove(["neovim"])
                info("Neovim removed via apt")
            elif any(line.split()[0] == "nvim" for line in run_command(["snap", "list"], self.verbose)):
                self.installer.run_checked(["sudo", "snap", "remove", "nvim"])
                info("Neovim removed via snap")
            else:
                warn("Neovim binary found but not installed via apt or snap")
                info("You may need to remove it manually")
        except InstallError as exc:
            warn(f"Failed to remove Neovim: {exc}")

    def run(self) -> RunReport:
        header("LazyVim Complete Removal Tool")
        print("This will remove ALL LazyVim and Neovim configurations.")
        warn("This action cannot be undone easily!")

        header("Checking LazyVim/Neovim Directories")
        dirs = self.existing()
        if not dirs:
            info("Nothing to remove. LazyVim is not installed.")
            return RunReport(COMPLETED, "Nothing to remove")
        for path in dirs:
            print(f"  - {path} ({format_size(calculate_path_size(path))})")
        print()

        if not self.confirm("Do you want to continue with the removal process?", False):
            info("Removal cancelled by user")
            return RunReport(DECLINED, "Removal cancelled")

        header("Creating Backup")
        if self.confirm("Do you want to create a backup before removing?", True):
            try:
                backup_root = self.backup(dirs)
            except (BackupError, OSError) as exc:
                error(f"Backup failed: {exc}")
                return RunReport(FAILED, f"Backup failed: {exc}")
            info(f"Backup created successfully at: {backup_root}")
        else:
            warn("Skipping backup")

        header("Removing LazyVim/Neovim Configurations")
        warn("This will permanently delete:")
        for path in dirs:
            print(f"  - {path}")
        print()
        if self.ask("Are you absolutely sure you want to proceed? (yes/NO): ").strip() != "yes":
            info("Removal cancelled by user")
            return RunReport(DECLINED, "Removal cancelled")
        try:
            self.remove(dirs)
        except RemovalError as exc:
            error(str(exc))
            return RunReport(FAILED, str(exc))

        header("Verifying Removal")
        remaining = self.existing()
        if remaining:
            warn("Some directories still exist:")
            for path in remaining:
                print(f"  - {path}")
        else:
            info("All LazyVim/Neovim directories have been removed")

        self.remove_package()
        header("Removal Complete!")
        if self.installer.has_command("nvim"):
            print("Neovim is still installed. When you next run 'nvim', it will start fresh.")
        status = FAILED if remaining else COMPLETED
        return RunReport(status, "Directories remain" if remaining else "")


# ---------------------------------------------------------------------------
# Command line
# ---------------------------------------------------------------------------

def install_command(args: argparse.Namespace) -> int:
    workflow = InstallWorkflow(
        managed_root=get_managed_root(args.dotfiles_dir),
        home=get_home(),
        confirm=always_yes if args.yes else prompt_confirm,
        strict=args.strict,
        canonical=args.canonical_paths,
        install_packages=not args.skip_packages,
        verbose=args.verbose,
    )
    return workflow.run().exit_code


def uninstall_command(args: argparse.Namespace) -> int:
    workflow = UninstallWorkflow(
        managed_root=get_managed_root(args.dotfiles_dir),
        home=get_home(),
        canonical=args.canonical_paths,
        verbose=args.verbose,
    )
    return workflow.run().exit_code


def list_backups_command(args: argparse.Namespace) -> int:
    store = BackupStore(get_home())
    backups = store.list()
    if args.json:
        data = [
            {"path": str(b.path), "created": b.created.isoformat(), "files": b.files()}
            for b in backups
        ]
        print(json.dumps(data, indent=2))
        return 0
    if not backups:
        warn(f"No backups found in {store.home}")
        return 0
    print_backups(backups)
    return 0


def remove_nvim_command(args: argparse.Namespace) -> int:
    return NvimRemover(get_home(), verbose=args.verbose).run().exit_code


def add_common_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--verbose", action="store_true", help="Enable debug output")


def add_dotfiles_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--dotfiles-dir",
        help=f"Directory holding the stow packages (default $DOTSTOW_DIR or {DEFAULT_DOTFILES_DIR})",
    )
    parser.add_argument(
        "--canonical-paths",
        action="store_true",
        help="Compare resolved paths instead of the substring check when judging existing links",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dotstow",
        description="dotstow (Ubuntu dotfiles installer)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    install_p = sub.add_parser("install", help="Install packages and link the dotfiles")
    add_dotfiles_flags(install_p)
    install_p.add_argument(
        "--strict",
        action="store_true",
        help="Stop at the first link group that fails instead of trying the rest",
    )
    install_p.add_argument(
        "--skip-packages",
        action="store_true",
        help="Only back up conflicts and link; do not install anything",
    )
    install_p.add_argument("--yes", action="store_true", help="Assume yes for prompts")
    add_common_flags(install_p)

    uninstall_p = sub.add_parser("uninstall", help="Remove the links and optionally restore a backup")
    add_dotfiles_flags(uninstall_p)
    add_common_flags(uninstall_p)

    backups_p = sub.add_parser("backups", help="List backup directories")
    backups_p.add_argument("--json", action="store_true", help="Output in JSON format")
    add_common_flags(backups_p)

    nvim_p = sub.add_parser("remove-nvim", help="Remove LazyVim/Neovim configuration")
    add_common_flags(nvim_p)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "install":
        return install_command(args)
    if args.command == "uninstall":
        return uninstall_command(args)
    if args.command == "backups":
        return list_backups_command(args)
    if args.command == "remove-nvim":
        return remove_nvim_command(args)
    parser.error("Unknown command")
    return 2


def run() -> None:
    try:
        code = main()
    except KeyboardInterrupt:
        print()
        warn("Interrupted")
        sys.exit(130)
    except Exception as e:
        import traceback
        ERROR_LOG_DIR.mkdir(parents=True, exist_ok=True)
        log_file = ERROR_LOG_DIR / "dotstow.error.log"

        timestamp = time.strftime("%Y-%m-%d %H:%M:%S")
        with open(log_file, "a") as f:
            f.write(f"\n--- Error at {timestamp} ---\n")
            traceback.print_exc(file=f)

        print(f"\n[!] An unexpected error occurred: {e}")
        print(f"[!] Details saved to: {log_file}")
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    run()
