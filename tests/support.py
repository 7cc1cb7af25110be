import os
from pathlib import Path
from typing import List, Sequence, Tuple


class FakeStow:
    """Creates and removes relative symlinks the way ``stow`` does, without folding."""

    def __init__(self, available: bool = True, fail: Sequence[str] = (), fail_unstow: Sequence[str] = ()) -> None:
        self._available = available
        self.fail = set(fail)
        self.fail_unstow = set(fail_unstow)
        self.calls: List[Tuple[str, str]] = []

    def available(self) -> bool:
        return self._available

    def command(self, managed_root: Path, package: str, home: Path, delete: bool = False) -> List[str]:
        return ["stow", "-D" if delete else "-v", package]

    def stow(self, managed_root: Path, package: str, home: Path) -> Tuple[bool, str]:
        self.calls.append(("stow", package))
        if package in self.fail:
            return False, "existing target is neither a link nor a directory"
        package_dir = managed_root / package
        for source in sorted(package_dir.rglob("*")):
            if source.is_dir():
                continue
            dest = home / source.relative_to(package_dir)
            dest.parent.mkdir(parents=True, exist_ok=True)
            if os.path.lexists(dest):
                if dest.is_symlink() and dest.resolve() == source.resolve():
                    continue
                return False, f"existing target {dest}"
            dest.symlink_to(os.path.relpath(source, dest.parent))
        return True, ""

    def unstow(self, managed_root: Path, package: str, home: Path) -> Tuple[bool, str]:
        self.calls.append(("unstow", package))
        if package in self.fail_unstow:
            return False, "stow: ERROR: cannot unstow"
        package_dir = managed_root / package
        for source in sorted(package_dir.rglob("*")):
            dest = home / source.relative_to(package_dir)
            if dest.is_symlink() and dest.resolve() == source.resolve():
                dest.unlink()
        return True, ""


class Answers:
    """Scripted replacement for the interactive prompts."""

    def __init__(self, confirms: Sequence[bool] = (), texts: Sequence[str] = ()) -> None:
        self.confirms = list(confirms)
        self.texts = list(texts)
        self.asked: List[str] = []

    def confirm(self, message: str, default: bool = False) -> bool:
        self.asked.append(message)
        return self.confirms.pop(0) if self.confirms else default

    def ask(self, message: str) -> str:
        self.asked.append(message)
        return self.texts.pop(0) if self.texts else ""


def make_bundle(root: Path) -> Path:
    """Build a small dotfiles tree with the three stow packages."""
    (root / "zsh").mkdir(parents=True)
    (root / "zsh/.zshrc").write_text("# managed zshrc\n")
    (root / "starship/.config").mkdir(parents=True)
    (root / "starship/.config/starship.toml").write_text("add_newline = true\n")
    (root / "alacritty/.config/alacritty").mkdir(parents=True)
    (root / "alacritty/.config/alacritty/alacritty.toml").write_text("[font]\nsize = 11.0\n")
    return root
