"""Ordered, in-place edits of vendor configuration files.

Each operation targets an absolute host path, resolved under the host root
(`/` on a real host, a scratch directory in tests). Operations are applied one
at a time and are not transactional: a failure leaves the earlier edits in
place. Edits that modify an existing file raise EditPreconditionError when
the file is missing, unless marked `missing_ok` (logged, then skipped).
"""

from __future__ import annotations

import fnmatch
import logging
import os
import re
import shutil
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, List, Optional, Tuple

import yaml

from ..errors import EditPreconditionError

logger = logging.getLogger(__name__)


def host_path(root: Path, path: str) -> Path:
    return Path(root) / str(path).lstrip("/")


def _require(root: Path, path: str, *, missing_ok: bool, what: str) -> Optional[Path]:
    p = host_path(root, path)
    if p.exists():
        return p
    if missing_ok:
        logger.warning("Skipping %s: %s does not exist", what, path)
        return None
    raise EditPreconditionError(f"{what}: {path} does not exist")


# -- ini (crudini-style) -----------------------------------------------------------

_SECTION_RE = re.compile(r"^\s*\[(?P<name>.+)\]\s*$")
_KEY_RE = re.compile(r"^\s*(?P<key>[^=#;\s][^=]*?)\s*=")


def _section_bounds(lines: List[str], section: str) -> Optional[Tuple[int, int]]:
    """(header index, end index exclusive) of `section`, or None."""

    start = None
    for i, line in enumerate(lines):
        m = _SECTION_RE.match(line)
        if not m:
            continue
        if start is not None:
            return start, i
        if m.group("name").strip() == section:
            start = i
    if start is None:
        return None
    return start, len(lines)


def ini_set(text: str, section: str, key: str, value: str) -> str:
    """Set `key = value` in `[section]`, keeping comments and the order of everything else."""

    lines = text.splitlines()
    entry = f"{key} = {value}"
    bounds = _section_bounds(lines, section)
    if bounds is None:
        while lines and not lines[-1].strip():
            lines.pop()
        if lines:
            lines.append("")
        lines += [f"[{section}]", entry]
        return "\n".join(lines) + "\n"

    start, end = bounds
    for i in range(start + 1, end):
        m = _KEY_RE.match(lines[i])
        if m and m.group("key").strip() == key:
            lines[i] = entry
            return "\n".join(lines) + "\n"

    insert_at = end
    while insert_at - 1 > start and not lines[insert_at - 1].strip():
        insert_at -= 1
    lines.insert(insert_at, entry)
    return "\n".join(lines) + "\n"


def ini_del_section(text: str, section: str) -> str:
    lines = text.splitlines()
    bounds = _section_bounds(lines, section)
    if bounds is None:
        return text
    start, end = bounds
    del lines[start:end]
    return "\n".join(lines) + ("\n" if lines else "")


def shell_var_set(text: str, key: str, value: str) -> str:
    """Set `KEY=value` in a section-less shell-style defaults file."""

    lines = text.splitlines()
    pattern = re.compile(rf"^\s*{re.escape(key)}\s*=")
    for i, line in enumerate(lines):
        if pattern.match(line):
            lines[i] = f"{key}={value}"
            break
    else:
        lines.append(f"{key}={value}")
    return "\n".join(lines) + "\n"


def yaml_set(data: Any, dotted_key: str, value: Any) -> Any:
    """Set a dotted key path (`a.b.c`) in a YAML document, creating mappings as needed."""

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise EditPreconditionError(f"YAML document is not a mapping (got {type(data).__name__})")
    node = data
    parts = dotted_key.split(".")
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[parts[-1]] = value
    return data


# -- operations ---------------------------------------------------------------------


class Edit:
    def apply(self, root: Path) -> None:
        raise NotImplementedError


@dataclass(frozen=True)
class EnsureDir(Edit):
    path: str
    mode: Optional[int] = None

    def apply(self, root: Path) -> None:
        p = host_path(root, self.path)
        p.mkdir(parents=True, exist_ok=True)
        if self.mode is not None:
            p.chmod(self.mode)


@dataclass(frozen=True)
class WriteFile(Edit):
    path: str
    content: str
    mode: Optional[int] = None

    def apply(self, root: Path) -> None:
        p = host_path(root, self.path)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(self.content, encoding="utf-8")
        if self.mode is not None:
            p.chmod(self.mode)


@dataclass(frozen=True)
class Touch(Edit):
    path: str

    def apply(self, root: Path) -> None:
        p = host_path(root, self.path)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.touch(exist_ok=True)


@dataclass(frozen=True)
class CopyFile(Edit):
    """Copy `src` to `dst`; a `dst` that is an existing directory receives the file by name."""

    src: str
    dst: str
    missing_ok: bool = False

    def apply(self, root: Path) -> None:
        s = _require(root, self.src, missing_ok=self.missing_ok, what="copy source")
        if s is None:
            return
        d = host_path(root, self.dst)
        if d.is_dir():
            d = d / s.name
        d.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(s, d)


@dataclass(frozen=True)
class CopyTree(Edit):
    """Copy the files under `src` whose name matches `include` into `dst`, keeping relative paths."""

    src: str
    dst: str
    include: str = "*"

    def apply(self, root: Path) -> None:
        s = _require(root, self.src, missing_ok=False, what="copy tree source")
        d = host_path(root, self.dst)
        d.mkdir(parents=True, exist_ok=True)
        copied = 0
        for item in sorted(s.rglob("*")):
            if item.is_dir() or not fnmatch.fnmatch(item.name, self.include):
                continue
            out = d / item.relative_to(s)
            out.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(item, out)
            copied += 1
        if not copied:
            raise EditPreconditionError(f"copy tree: nothing matching {self.include!r} under {self.src}")


@dataclass(frozen=True)
class RemoveFile(Edit):
    path: str
    missing_ok: bool = True

    def apply(self, root: Path) -> None:
        p = _require(root, self.path, missing_ok=self.missing_ok, what="remove")
        if p is not None:
            p.unlink()


@dataclass(frozen=True)
class Chmod(Edit):
    path: str
    executable: bool

    def apply(self, root: Path) -> None:
        p = _require(root, self.path, missing_ok=False, what="chmod")
        exec_bits = stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH
        mode = p.stat().st_mode
        p.chmod(mode | exec_bits if self.executable else mode & ~exec_bits)


@dataclass(frozen=True)
class Symlink(Edit):
    """Link `link` -> `target`. The target is stored as the real host path."""

    target: str
    link: str

    def apply(self, root: Path) -> None:
        p = host_path(root, self.link)
        if p.is_symlink() or p.exists():
            return
        p.parent.mkdir(parents=True, exist_ok=True)
        os.symlink(self.target, p)


@dataclass(frozen=True)
class AppendText(Edit):
    """Append `text`; skipped when `unless_present` already occurs in the file."""

    path: str
    text: str
    unless_present: Optional[str] = None
    create: bool = False

    def apply(self, root: Path) -> None:
        p = host_path(root, self.path)
        if not p.exists():
            if not self.create:
                raise EditPreconditionError(f"append: {self.path} does not exist")
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_text("", encoding="utf-8")
        current = p.read_text(encoding="utf-8")
        if self.unless_present is not None and self.unless_present in current:
            logger.info("%s already contains %r", self.path, self.unless_present)
            return
        with p.open("a", encoding="utf-8") as f:
            f.write(self.text)


@dataclass(frozen=True)
class ReplaceText(Edit):
    path: str
    old: str
    new: str
    missing_ok: bool = False

    def apply(self, root: Path) -> None:
        p = _require(root, self.path, missing_ok=self.missing_ok, what="replace")
        if p is None:
            return
        text = p.read_text(encoding="utf-8")
        p.write_text(text.replace(self.old, self.new), encoding="utf-8")


@dataclass(frozen=True)
class ReplaceInTree(Edit):
    """ReplaceText on every file under `directory`, except paths in `exclude`."""

    directory: str
    old: str
    new: str
    exclude: Tuple[str, ...] = ()

    def apply(self, root: Path) -> None:
        base = _require(root, self.directory, missing_ok=False, what="replace in tree")
        excluded = {host_path(root, e) for e in self.exclude}
        for f in sorted(base.rglob("*")):
            if not f.is_file() or f.is_symlink() or f in excluded:
                continue
            try:
                text = f.read_text(encoding="utf-8")
            except UnicodeDecodeError:
                logger.debug("Skipping binary file %s", f)
                continue
            if self.old in text:
                f.write_text(text.replace(self.old, self.new), encoding="utf-8")


@dataclass(frozen=True)
class IniSet(Edit):
    path: str
    section: str
    key: str
    value: str
    create: bool = False

    def apply(self, root: Path) -> None:
        p = host_path(root, self.path)
        if not p.exists():
            if not self.create:
                raise EditPreconditionError(f"ini set: {self.path} does not exist")
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_text("", encoding="utf-8")
        p.write_text(ini_set(p.read_text(encoding="utf-8"), self.section, self.key, self.value), encoding="utf-8")


@dataclass(frozen=True)
class IniDelSection(Edit):
    path: str
    section: str

    def apply(self, root: Path) -> None:
        p = _require(root, self.path, missing_ok=False, what="ini delete")
        p.write_text(ini_del_section(p.read_text(encoding="utf-8"), self.section), encoding="utf-8")


@dataclass(frozen=True)
class ShellVarSet(Edit):
    path: str
    key: str
    value: str

    def apply(self, root: Path) -> None:
        p = _require(root, self.path, missing_ok=False, what="shell var set")
        p.write_text(shell_var_set(p.read_text(encoding="utf-8"), self.key, self.value), encoding="utf-8")


@dataclass(frozen=True)
class YamlSet(Edit):
    path: str
    values: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    def apply(self, root: Path) -> None:
        p = _require(root, self.path, missing_ok=False, what="yaml set")
        data = yaml.safe_load(p.read_text(encoding="utf-8"))
        for dotted, value in self.values:
            data = yaml_set(data, dotted, value)
        p.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")


def apply_edits(root: Path | str, edits: Iterable[Edit], *, dry_run: bool = False) -> int:
    """Apply `edits` in order. Returns the number applied."""

    n = 0
    for e in edits:
        logger.info("EDIT %s", e)
        if not dry_run:
            e.apply(Path(root))
        n += 1
    return n
