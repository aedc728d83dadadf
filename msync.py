# Copyright (c) 2025 Joe Walter
# GNU General Public License v3.0

import sys
import argparse
import os
import re
import glob
import stat
import errno
import shutil
import logging
import tempfile
import time
import traceback
from enum import Enum
from pathlib import Path
from typing import NamedTuple, Callable, Iterable, Iterator

logger = logging.getLogger(__name__)
logger.setLevel(logging.DEBUG)
logger.addHandler(logging.NullHandler())

DEFAULT_EXCLUDE  = ("**/.DS_Store",)
DEST_SUFFIX      = " rsync folder"
MAX_DETAIL_LINES = 10

GB = 1_000_000_000
MB = 1_000_000

# errno values meaning the destination volume can take no more writes
_FATAL_ERRNOS = {errno.ENOSPC, errno.EROFS, getattr(errno, "EDQUOT", errno.ENOSPC)}
_NO_XATTR_ERRNOS = {errno.ENOTSUP, errno.EOPNOTSUPP, getattr(errno, "ENODATA", errno.ENOTSUP)}

class SyncError(Exception):
	'''Base class for errors raised by msync.'''

class EmptyInput(SyncError):
	'''No source path was given. There is nothing to do, which is not a failure.'''

class InvalidSource(SyncError, ValueError):
	'''The source path is missing or is not a directory.'''

class DestinationExists(SyncError, ValueError):
	'''The destination path is already taken. msync never writes into an existing destination.'''

class PerEntryCopyFailure(SyncError, OSError):
	'''A single entry could not be copied. Recorded; the run continues.'''

class AttributeCopyFailed(SyncError, OSError):
	'''Content was copied but some metadata could not be preserved. Recorded; the run continues.'''

class CatastrophicIOFailure(SyncError, OSError):
	'''The destination can no longer be written to (e.g. the volume is full). Aborts the copy.'''

class _DebugInfoFilter(logging.Filter):
	'''Logging filter that only allows DEBUG and INFO records to pass.'''

	def filter(self, record):
		return logging.DEBUG <= record.levelno <= logging.INFO

class _ArgParser:
	'''Argument parser for when this python file is run with arguments instead of an imported module.'''

	parser = argparse.ArgumentParser(
		description="Copy a folder, with all of its metadata (permissions, ownership, timestamps, extended attributes, hard links and flags), into a new folder named \"<folder> rsync folder\".",
		epilog="(c) 2025 Joe Walter"
	)

	parser.add_argument("source", nargs="?", default=None, help="The folder to copy. Surrounding quotes are removed. If omitted or empty, msync exits without doing anything.")
	parser.add_argument("--source", dest="source_opt", metavar="path", default=None, help="Same as the positional argument, for callers that cannot pass one.")
	parser.add_argument("--dest-root", metavar="path", default=None, help="The folder in which the copy is created. (Defaults to ~/Desktop.)")
	parser.add_argument("-e", "--exclude", metavar="pattern", action="append", default=[], help="A glob pattern (relative to the source folder) of entries to leave out, in addition to \"**/.DS_Store\". Patterns ending with \"/\" apply to directories only. May be repeated.")
	parser.add_argument("--clean-source", action="store_true", default=False, help="Delete excluded files from the source folder itself before copying.")
	parser.add_argument("-d", "--dry-run", action="store_true", default=False, help="Forgo performing any operation that would make a file system change. Changes that would have occurred will still be printed to console.")

	parser.add_argument("--log", metavar="path", nargs="?", type=str, default=None, const="auto", help="The path of the log file to use. It will be created if it does not exist. With \"auto\" or no argument, a tempfile will be used for the log, and it will be moved to the user's home directory after the copy is done. If this flag is absent, then no logging will be performed.")
	parser.add_argument("--debug", action="store_true", default=False, help="Log debug messages.")
	parser.add_argument("-q", action="count", default=0, help="Forgo printing to stdout (-q) and stderr (-qq).")

	@staticmethod
	def parse(args:list[str]) -> argparse.Namespace:
		parsed_args = _ArgParser.parser.parse_args(args)
		if parsed_args.source_opt is not None:
			parsed_args.source = parsed_args.source_opt
		del parsed_args.source_opt
		parsed_args.quiet     = parsed_args.q >= 1
		parsed_args.veryquiet = parsed_args.q >= 2
		del parsed_args.q
		return parsed_args

class ExclusionRule:
	'''
	Glob patterns, relative to a tree root, naming entries that are never copied. Patterns ending with "/" only match directories.

	>>> rule = ExclusionRule(["**/.DS_Store", "./cache/"])
	>>> rule.matches(".DS_Store"), rule.matches(os.path.join("a", "b", ".DS_Store"))
	(True, True)
	>>> rule.matches("cache"), rule.matches("cache", is_dir=True)
	(False, True)
	'''

	patterns : tuple[str, ...]

	def __init__(self, patterns:Iterable[str] = DEFAULT_EXCLUDE):
		self.patterns = tuple(patterns)
		self._regexes : list[re.Pattern] = []
		for pattern in self.patterns:
			if pattern[:2] == "./" or pattern[:2] == ".\\":
				pattern = pattern[2:]
			if os.path.isabs(pattern):
				raise ValueError(f"Absolute paths are not supported as exclude patterns: {pattern}")
			if pattern == "":
				continue
			self._regexes.append(re.compile(glob.translate(pattern, recursive=True, include_hidden=True)))

	def matches(self, relpath:str, is_dir:bool = False) -> bool:
		'''Whether the entry at `relpath` is excluded.'''

		if any(r.match(relpath) for r in self._regexes):
			return True
		return is_dir and any(r.match(relpath + os.sep) for r in self._regexes)

class SyncRequest(NamedTuple):
	'''Where to copy from and to. Built once by `resolve()`.'''

	source_path      : Path
	destination_path : Path

class EntryKind(Enum):
	FILE            = "file"
	DIRECTORY       = "directory"
	SYMLINK         = "symlink"
	HARDLINK_MEMBER = "hardlink_member"

class Entry(NamedTuple):
	'''A snapshot of one file system object under the source root, as yielded by `scan()`.'''

	relative_path        : str
	kind                 : EntryKind
	size_bytes           : int
	permission_bits      : int
	owner                : int
	group                : int
	creation_time        : float | None
	access_time_ns       : int
	modification_time_ns : int
	extended_attributes  : dict[str, bytes]
	flags                : int | None
	hardlink_group_id    : tuple[int, int] | None # (st_dev, st_ino)

class CopyError(NamedTuple):
	relative_path : str
	cause         : Exception

	@property
	def message(self) -> str:
		return f"{self.relative_path}: {self.cause}"

class Success(NamedTuple):
	files_copied : int
	size_display : str

class Failure(NamedTuple):
	reason       : str
	detail_lines : list[str]

class CopyResult:
	'''Various statistics and errors accumulated over one run and returned by `sync()`.'''

	def __init__(self) -> None:
		self.request         : SyncRequest | None = None
		self.dry_run         : bool = False

		self.files_copied    = 0
		self.bytes_copied    = 0
		self.links_created   = 0
		self.dirs_created    = 0
		self.skipped_mounts  = 0
		self.skipped_special = 0
		self.purged          = 0

		self.errors          : list[CopyError] = []
		self.error           : BaseException | None = None # any error that stopped the run early

	def tally_file(self, nbytes:int) -> None:
		self.files_copied += 1
		self.bytes_copied += nbytes

	def tally_failure(self, relpath:str, cause:Exception) -> None:
		error = CopyError(relpath, cause)
		logger.error(error.message)
		self.errors.append(error)

	def tally_os_error(self, relpath:str, e:OSError) -> None:
		self.tally_failure(relpath, PerEntryCopyFailure(_error_summary(e)))

	@property
	def success(self) -> bool:
		return self.error is None and not self.errors

def resolve(raw:str | os.PathLike[str] | None, *, dest_root:str | os.PathLike[str] | None = None) -> SyncRequest:
	'''
	Validates the source folder and derives the destination `<dest_root>/<source name> rsync folder`.

	Surrounding whitespace and one pair of surrounding quotes are removed from `raw`, as left behind by drag and drop. `dest_root` defaults to the user's desktop.

	Raises `EmptyInput` if nothing is left of `raw`, `InvalidSource` if it is not an existing directory and `DestinationExists` if the destination path is taken. Nothing is written.
	'''

	if raw is None:
		raise EmptyInput()
	text = os.fspath(raw).strip()
	if len(text) >= 2 and text[0] == text[-1] and text[0] in "'\"":
		text = text[1:-1]
	if text == "":
		raise EmptyInput()

	source = Path(text).expanduser()
	if not source.exists():
		raise InvalidSource(f"Source does not exist: {source}")
	if not source.is_dir():
		raise InvalidSource(f"Source is not a directory: {source}")
	# named after the folder as given, not the target of a symlink
	name = source.name
	source = source.resolve()
	if name in ("", ".", ".."):
		name = source.name

	if dest_root is None:
		root = Path.home() / "Desktop"
	else:
		root = Path(dest_root).expanduser()
	destination = Path(os.path.abspath(root)) / f"{name}{DEST_SUFFIX}"
	if os.path.lexists(destination):
		raise DestinationExists(f"Destination already exists: {destination}")

	return SyncRequest(source, destination)

def _walk(root:str | os.PathLike[str], on_error:Callable[[str, OSError], None] | None) -> Iterator[tuple[str, list[str], list[str]]]:
	'''`os.walk()` from `root`, top-down and without following symlinks. A directory that cannot be listed goes to `on_error` with its relative path, or is raised if that is `None`.'''

	def onerror(e:OSError) -> None:
		if on_error is None:
			raise e
		on_error(os.path.relpath(e.filename or root, root), e)

	return os.walk(root, topdown=True, onerror=onerror, followlinks=False)

def purge_source(
		root      : str | os.PathLike[str],
		exclusion : ExclusionRule,
		*,
		dry_run   : bool = False,
		on_error  : Callable[[str, OSError], None] | None = None,
	) -> int:
	'''
	Deletes excluded files and symlinks from the source tree itself. Directories are left alone, and mount points are not crossed. Returns the number of entries deleted.

	An entry that cannot be inspected or deleted, or a directory that cannot be listed, is passed to `on_error` with its relative path, and the pass goes on. Errors are raised if `on_error` is `None`.
	'''

	root_dev = os.stat(root).st_dev
	removed = 0
	for dir, subdirnames, filenames in _walk(root, on_error):
		descend = []
		for name in subdirnames:
			subdir_path = os.path.join(dir, name)
			subdir_relpath = os.path.relpath(subdir_path, root)
			try:
				st = os.lstat(subdir_path)
			except OSError as e:
				if on_error is None:
					raise
				on_error(subdir_relpath, e)
				continue
			if stat.S_ISDIR(st.st_mode) and st.st_dev == root_dev:
				descend.append(name)
		subdirnames[:] = descend

		for filename in filenames:
			file_path = os.path.join(dir, filename)
			file_relpath = os.path.relpath(file_path, root)
			if not exclusion.matches(file_relpath):
				continue
			try:
				mode = os.lstat(file_path).st_mode
				if not (stat.S_ISREG(mode) or stat.S_ISLNK(mode)):
					continue
				logger.info(f"- {file_relpath} (source)")
				if not dry_run:
					os.unlink(file_path)
				removed += 1
			except OSError as e:
				if on_error is None:
					raise
				on_error(file_relpath, e)
	return removed

def _read_xattrs(path:str | os.PathLike[str]) -> dict[str, bytes]:
	'''
	Reads the extended attributes of `path` that this process is able to write back. As root that is every namespace; otherwise only "user.*", as with `rsync -X`.
	'''

	if not hasattr(os, "listxattr"):
		return {}
	try:
		names = os.listxattr(path, follow_symlinks=False)
	except OSError as e:
		if e.errno in _NO_XATTR_ERRNOS:
			return {}
		raise
	privileged = os.geteuid() == 0
	xattrs = {}
	for name in names:
		if not privileged and not name.startswith("user."):
			continue
		try:
			xattrs[name] = os.getxattr(path, name, follow_symlinks=False)
		except OSError as e:
			if e.errno in _NO_XATTR_ERRNOS:
				continue
			raise
	return xattrs

def _snapshot(path:str | os.PathLike[str], relpath:str, st:os.stat_result) -> Entry | None:
	'''Builds the `Entry` for `path` from its lstat result. Returns `None` for sockets, FIFOs and device nodes.'''

	mode = st.st_mode
	group_id = None
	if stat.S_ISDIR(mode):
		kind = EntryKind.DIRECTORY
	elif stat.S_ISLNK(mode):
		kind = EntryKind.SYMLINK
	elif stat.S_ISREG(mode):
		if st.st_nlink > 1:
			kind = EntryKind.HARDLINK_MEMBER
			group_id = (st.st_dev, st.st_ino)
		else:
			kind = EntryKind.FILE
	else:
		return None

	return Entry(
		relative_path        = relpath,
		kind                 = kind,
		size_bytes           = st.st_size if stat.S_ISREG(mode) else 0,
		permission_bits      = stat.S_IMODE(mode),
		owner                = st.st_uid,
		group                = st.st_gid,
		creation_time        = getattr(st, "st_birthtime", None),
		access_time_ns       = st.st_atime_ns,
		modification_time_ns = st.st_mtime_ns,
		extended_attributes  = {} if kind is EntryKind.SYMLINK else _read_xattrs(path),
		flags                = getattr(st, "st_flags", None),
		hardlink_group_id    = group_id,
	)

def scan(
		root            : str | os.PathLike[str],
		exclusion       : ExclusionRule,
		*,
		skip            : str | os.PathLike[str] | None = None,
		one_file_system : bool = True,
		on_error        : Callable[[str, OSError], None] | None = None,
		result          : CopyResult | None = None,
	) -> Iterator[Entry]:
	'''
	Lazily yields an `Entry` for everything under `root`, top-down, so a directory always comes before its contents. Entries within a directory are yielded in name order.

	Args
		root (str or PathLike)  : The directory to scan. Followed if it is a symlink.
		exclusion (ExclusionRule) : Entries matching this rule are skipped; excluded directories are not searched.
		skip (str or PathLike)  : An absolute path that is never yielded nor searched, e.g. a destination that lies inside `root`.
		one_file_system (bool)  : Whether to skip entries on a different device than `root` (mount points). (Defaults to `True`.)
		on_error (callable)     : Called with the relative path and the error when an entry cannot be inspected or a directory cannot be listed. Errors are raised if this is `None`.
		result (CopyResult)     : Where skip counts are tallied, if given.

	Symlinks are yielded as symlinks and never followed. Sockets, FIFOs and device nodes are skipped.
	'''

	root = os.path.abspath(root)
	root_dev = os.stat(root).st_dev
	if skip is not None:
		skip = os.path.abspath(skip)

	for dir, subdirnames, filenames in _walk(root, on_error):
		logger.debug(f"scanning: {dir}")

		descend = set()
		names = sorted(subdirnames + filenames)
		for name in names:
			path = os.path.join(dir, name)
			relpath = os.path.relpath(path, root)
			if path == skip:
				continue
			try:
				st = os.lstat(path)
			except OSError as e:
				if on_error is None:
					raise
				on_error(relpath, e)
				continue

			is_dir = stat.S_ISDIR(st.st_mode)
			if exclusion.matches(relpath, is_dir=is_dir):
				logger.debug(f"excluded: {relpath}")
				continue
			if one_file_system and st.st_dev != root_dev:
				logger.debug(f"other file system, skipped: {relpath}")
				if result is not None:
					result.skipped_mounts += 1
				continue

			try:
				entry = _snapshot(path, relpath, st)
			except OSError as e:
				if on_error is None:
					raise
				on_error(relpath, e)
				continue
			if entry is None:
				logger.debug(f"not a regular file, skipped: {relpath}")
				if result is not None:
					result.skipped_special += 1
				continue

			if is_dir:
				descend.add(name)
			yield entry

		# prune search tree
		subdirnames[:] = [n for n in subdirnames if n in descend]

def _is_catastrophic(e:OSError) -> bool:
	return e.errno in _FATAL_ERRNOS

def _copy_file_content(src:Path, dst:Path) -> int:
	'''Copies the bytes of `src` into the new file `dst`. A partial `dst` is removed if the copy fails. Returns the number of bytes copied.'''

	with open(src, "rb") as fsrc, open(dst, "xb") as fdst:
		try:
			shutil.copyfileobj(fsrc, fdst)
		except OSError:
			dst.unlink(missing_ok=True)
			raise
		return fdst.tell()

def _apply_metadata(entry:Entry, dst:Path) -> None:
	'''
	Copies ownership, extended attributes, permission bits, timestamps and flags from `entry` onto `dst`, in that order (chown clears setuid bits, and immutable flags block any later change).

	Ownership follows `rsync -a`: as root, owner and group are set; otherwise only a group the user belongs to is set.

	Every step is attempted. Raises `AttributeCopyFailed` naming those that failed.
	'''

	is_link = entry.kind is EntryKind.SYMLINK
	failed : list[str] = []

	def attempt(what, func, *args, **kwargs):
		try:
			func(*args, **kwargs)
		except OSError as e:
			if _is_catastrophic(e):
				raise CatastrophicIOFailure(_error_summary(e)) from e
			failed.append(f"{what} ({_error_summary(e)})")

	def supported(func) -> bool:
		return not is_link or func in os.supports_follow_symlinks

	follow = not is_link
	st = os.lstat(dst)
	if supported(os.chown):
		if os.geteuid() == 0:
			if (st.st_uid, st.st_gid) != (entry.owner, entry.group):
				attempt("owner", os.chown, dst, entry.owner, entry.group, follow_symlinks=follow)
		elif st.st_gid != entry.group and entry.group in os.getgroups():
			attempt("group", os.chown, dst, -1, entry.group, follow_symlinks=follow)

	for name, value in entry.extended_attributes.items():
		attempt(f"xattr {name}", os.setxattr, dst, name, value)

	if supported(os.chmod):
		attempt("permissions", os.chmod, dst, entry.permission_bits, follow_symlinks=follow)

	# on macOS an mtime earlier than the birth time also moves the birth time back
	if supported(os.utime):
		attempt("timestamps", os.utime, dst, ns=(entry.access_time_ns, entry.modification_time_ns), follow_symlinks=follow)

	if entry.flags and hasattr(os, "chflags") and supported(os.chflags):
		attempt("flags", os.chflags, dst, entry.flags, follow_symlinks=follow)

	if failed:
		raise AttributeCopyFailed("could not preserve " + ", ".join(failed))

def _copy_entry(entry:Entry, src:Path, dst:Path, links:dict[tuple[int, int], tuple[str, Path]], result:CopyResult, *, dry_run:bool) -> None:
	'''
	Recreates `entry` at `dst`. Metadata failures are tallied here; any other error is raised to the caller.

	Directory metadata is not applied here (see `_finalize_dirs()`).
	'''

	relpath = entry.relative_path

	if entry.kind is EntryKind.DIRECTORY:
		logger.info(f"+ {relpath}{os.sep}")
		if not dry_run:
			os.mkdir(dst, 0o700)
		result.dirs_created += 1
		return

	if entry.kind is EntryKind.HARDLINK_MEMBER and entry.hardlink_group_id in links:
		first_relpath, first_dst = links[entry.hardlink_group_id]
		logger.info(f"H {relpath} => {first_relpath}")
		if not dry_run:
			os.link(first_dst, dst)
		result.links_created += 1
		result.tally_file(0)
		# shares the inode, and so the metadata, of the first member
		return

	if entry.kind is EntryKind.SYMLINK:
		target = os.readlink(src)
		logger.info(f"L {relpath} -> {target}")
		if not dry_run:
			os.symlink(target, dst)
		result.tally_file(0)
	else:
		logger.info(f"+ {relpath}")
		nbytes = entry.size_bytes if dry_run else _copy_file_content(src, dst)
		if entry.hardlink_group_id is not None:
			links[entry.hardlink_group_id] = (relpath, dst)
		result.tally_file(nbytes)

	if not dry_run:
		try:
			_apply_metadata(entry, dst)
		except AttributeCopyFailed as e:
			result.tally_failure(relpath, e)

def _finalize_dirs(dirs:list[tuple[Entry, Path]], result:CopyResult) -> None:
	'''Applies directory metadata deepest first, once nothing more will be written inside them.'''

	for entry, dst in reversed(dirs):
		relpath = entry.relative_path or "."
		try:
			_apply_metadata(entry, dst)
		except CatastrophicIOFailure:
			raise
		except AttributeCopyFailed as e:
			result.tally_failure(relpath, e)
		except OSError as e:
			result.tally_os_error(relpath, e)

def copy_tree(request:SyncRequest, exclusion:ExclusionRule, result:CopyResult, *, dry_run:bool = False) -> None:
	'''
	Copies the source tree of `request` into its (new) destination, preserving metadata and hard links.

	A failure on a single entry is tallied in `result` and the copy continues. Raises `CatastrophicIOFailure` if the destination volume stops accepting writes (leaving a partial copy behind), and `DestinationExists` if the destination appeared since `resolve()`.
	'''

	src_root = request.source_path
	dst_root = request.destination_path

	if not dry_run:
		try:
			os.mkdir(dst_root, 0o700)
		except FileExistsError as e:
			raise DestinationExists(f"Destination already exists: {dst_root}") from e
		except OSError as e:
			raise CatastrophicIOFailure(f"Cannot create destination: {_error_summary(e)}") from e

	root_entry = _snapshot(src_root, "", os.stat(src_root))
	assert root_entry is not None
	dirs  : list[tuple[Entry, Path]] = [(root_entry, dst_root)]
	links : dict[tuple[int, int], tuple[str, Path]] = {}
	failed_dirs : set[str] = set()

	for entry in scan(src_root, exclusion, skip=os.path.realpath(dst_root), on_error=result.tally_os_error, result=result):
		relpath = entry.relative_path
		if os.path.dirname(relpath) in failed_dirs:
			# already reported through the directory
			logger.debug(f"parent not copied, skipped: {relpath}")
			if entry.kind is EntryKind.DIRECTORY:
				failed_dirs.add(relpath)
			continue

		src = src_root / relpath
		dst = dst_root / relpath
		try:
			_copy_entry(entry, src, dst, links, result, dry_run=dry_run)
		except CatastrophicIOFailure:
			raise
		except OSError as e:
			if _is_catastrophic(e):
				raise CatastrophicIOFailure(_error_summary(e)) from e
			result.tally_os_error(relpath, e)
			if entry.kind is EntryKind.DIRECTORY:
				failed_dirs.add(relpath)
			continue
		if entry.kind is EntryKind.DIRECTORY:
			dirs.append((entry, dst))

	if not dry_run:
		_finalize_dirs(dirs, result)

def reconcile(
		dst_root     : str | os.PathLike[str],
		exclusion    : ExclusionRule,
		*,
		source_paths : set[str] | None = None,
		dry_run      : bool = False,
		on_error     : Callable[[str, OSError], None] | None = None,
	) -> int:
	'''
	Removes entries under `dst_root` that match `exclusion`, such as index files created by the desktop while the copy was running. Running it again removes nothing more.

	If `source_paths` (relative paths of everything in the source) is given, every entry whose relative path is not in it is removed as well, which gives full mirror semantics for a destination that already existed. `sync()` never needs this since its destinations are always new.

	Returns the number of entries removed.
	'''

	removed = 0
	for dir, subdirnames, filenames in _walk(dst_root, on_error):
		descend = set()
		names = sorted(subdirnames + filenames)
		for name in names:
			path = os.path.join(dir, name)
			relpath = os.path.relpath(path, dst_root)
			try:
				is_dir = stat.S_ISDIR(os.lstat(path).st_mode)
				extraneous = source_paths is not None and relpath not in source_paths
				if extraneous or exclusion.matches(relpath, is_dir=is_dir):
					logger.info(f"- {relpath}{os.sep if is_dir else ''}")
					if not dry_run:
						if is_dir:
							shutil.rmtree(path)
						else:
							os.unlink(path)
					removed += 1
					continue
			except OSError as e:
				if on_error is None:
					raise
				on_error(relpath, e)
				continue
			if is_dir:
				descend.add(name)

		# prune search tree
		subdirnames[:] = [n for n in subdirnames if n in descend]
	return removed

def format_size(n:int) -> str:
	'''
	Formats a byte count in decimal megabytes, or gigabytes from 1 GB up.

	>>> format_size(0)
	'0.00 MB'
	>>> format_size(999_999_999)
	'1000.00 MB'
	>>> format_size(1_000_000_000)
	'1.00 GB'
	>>> format_size(2_345_678_901)
	'2.35 GB'
	'''

	if n >= GB:
		return f"{n / GB:.2f} GB"
	return f"{n / MB:.2f} MB"

def summarize(result:CopyResult) -> Success | Failure:
	'''Turns `result` into the outcome handed to `report()`: `Success` if nothing went wrong, else a `Failure` with at most `MAX_DETAIL_LINES` messages.'''

	if result.success:
		return Success(result.files_copied, format_size(result.bytes_copied))

	error = result.error
	lines = []
	if isinstance(error, InvalidSource):
		reason = "Invalid source folder"
	elif isinstance(error, DestinationExists):
		reason = "Destination folder already exists"
	elif isinstance(error, CatastrophicIOFailure):
		reason = "Copy aborted"
	elif isinstance(error, KeyboardInterrupt):
		reason = "Cancelled by user"
	elif error is not None:
		reason = "Unexpected error"
	else:
		reason = f"Copy finished with {len(result.errors)} error(s)"
	if error is not None and str(error):
		lines.append(str(error))
	lines.extend(e.message for e in result.errors)
	return Failure(reason, lines[:MAX_DETAIL_LINES])

def _log_report(outcome:Success | Failure) -> None:
	'''The default `report` collaborator: one summary through the logger.'''

	logger.info("")
	if isinstance(outcome, Success):
		logger.info(f"Copied {outcome.files_copied} files ({outcome.size_display}).")
	else:
		logger.error(f"{outcome.reason}.")
		for line in outcome.detail_lines:
			logger.error(line)

def sync(
		source       : str | os.PathLike[str] | None,
		*,
		dest_root    : str | os.PathLike[str] | None = None,
		report       : Callable[[Success | Failure], None] | None = None,
		exclude      : Iterable[str] = (),
		clean_source : bool = False,
		dry_run      : bool = False,
	) -> CopyResult | None:
	'''
	Copies the folder `source` into a new folder `<dest_root>/<source name> rsync folder`, preserving permission bits, ownership, timestamps, extended attributes, hard links and flags. Symlinks are copied as symlinks and other file systems mounted inside `source` are left out.

	Args
		source (str or PathLike)    : The folder to copy. Surrounding quotes are removed.
		dest_root (str or PathLike) : Where the copy is created. (Defaults to ~/Desktop.)
		report (callable)           : Called exactly once with a `Success` or `Failure` when the run ends. (Defaults to logging the outcome.)
		exclude (iterable of str)   : Glob patterns of entries to leave out, in addition to "**/.DS_Store".
		clean_source (bool)         : Whether to delete excluded files from `source` itself first. (Defaults to `False`.)
		dry_run (bool)              : Whether to hold off performing any operation that would make a file system change. (Defaults to `False`.)

	Example Console Output
		   path/to/src
		-> path/to/Desktop/src rsync folder
		------------------------------------
		+ a/
		+ a/1.txt
		H a/2.txt => a/1.txt
		L latest -> a/1.txt

		Copied 3 files (0.01 MB).

	Returns
		`None` if `source` is empty (nothing is done and `report` is not called), otherwise a `CopyResult`.
	'''

	if report is None:
		report = _log_report
	result = CopyResult()
	result.dry_run = dry_run

	try:
		exclusion = ExclusionRule(DEFAULT_EXCLUDE + tuple(exclude))
		request = resolve(source, dest_root=dest_root)
		result.request = request

		logger.debug(f"Starting copy: {request=} {exclusion.patterns=} {clean_source=} {dry_run=}")

		width = max(len(str(request.source_path)), len(str(request.destination_path))) + 3
		logger.info("   " + str(request.source_path))
		logger.info("-> " + str(request.destination_path))
		logger.info("-" * width)

		if clean_source:
			result.purged += purge_source(request.source_path, exclusion, dry_run=dry_run, on_error=result.tally_os_error)
		copy_tree(request, exclusion, result, dry_run=dry_run)
		if not dry_run:
			result.purged += reconcile(request.destination_path, exclusion, on_error=result.tally_os_error)

		logger.debug(f"files={result.files_copied} bytes={result.bytes_copied} links={result.links_created} dirs={result.dirs_created} purged={result.purged} skipped_mounts={result.skipped_mounts} skipped_special={result.skipped_special} errors={len(result.errors)}")

	except EmptyInput:
		logger.debug("No source given, nothing to do.")
		return None
	except KeyboardInterrupt as e:
		logger.critical("Cancelled by user.")
		result.error = e
	except (InvalidSource, DestinationExists, CatastrophicIOFailure) as e:
		logger.critical(str(e))
		result.error = e
	except Exception as e:
		logger.critical("Unexpected error: " + _error_summary(e))
		logger.critical(traceback.format_exc())
		result.error = e

	if dry_run:
		logger.info("")
		logger.info("*** DRY RUN ***")

	report(summarize(result))
	return result

def _error_summary(e):
	'''Get a one-line summary of an Error.'''

	if isinstance(e, SyncError):
		return str(e)
	elif isinstance(e, OSError):
		error_type = type(e).__name__
		affected_file = getattr(e, "filename", None) or "N/A"
		if e.strerror:
			msg = f"{error_type} ({e.strerror}): {affected_file}"
		else:
			msg = f"{error_type}: {affected_file}"
	else:
		error_type = type(e).__name__
		error_message = str(e) or "Unknown error"
		msg = f"{error_type}: {error_message}"
	return msg

def sync_cmd(args:list[str], *, report:Callable[[Success | Failure], None] | None = None) -> int:
	'''Run `sync()` with command line arguments. Returns the process exit code: 0 on success or when there is nothing to do, 1 otherwise.'''

	parsed_args = _ArgParser.parse(args)
	if parsed_args.source is None or parsed_args.source.strip() == "":
		return 0

	if logger.handlers:
		for handler in list(logger.handlers):
			if not isinstance(handler, logging.NullHandler):
				logger.removeHandler(handler)

	handler_stdout = None
	handler_stderr = None
	handler_file   = None
	tmp_log_file   = None
	log_file       = None

	if not parsed_args.quiet:
		handler_stdout = logging.StreamHandler(sys.stdout)
		handler_stdout.setFormatter(logging.Formatter("%(message)s"))
		handler_stdout.addFilter(_DebugInfoFilter())
		handler_stdout.setLevel(logging.DEBUG if parsed_args.debug else logging.INFO)
		logger.addHandler(handler_stdout)

	if not parsed_args.veryquiet:
		handler_stderr = logging.StreamHandler(sys.stderr)
		handler_stderr.setFormatter(logging.Formatter("%(message)s"))
		handler_stderr.setLevel(logging.WARNING)
		logger.addHandler(handler_stderr)

	if parsed_args.log == "auto":
		timestamp = str(int(time.time()*1000))
		log_file = Path.home() / f"msync.{timestamp}.log"
		with tempfile.NamedTemporaryFile(mode="w+", encoding="utf-8", delete=False) as tmp_log:
			tmp_log_file = Path(tmp_log.name)
		handler_file = logging.FileHandler(tmp_log_file, encoding="utf-8")
	elif parsed_args.log is not None:
		log_file = Path(parsed_args.log)
		handler_file = logging.FileHandler(log_file, encoding="utf-8")
	if handler_file:
		handler_file.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
		handler_file.setLevel(logging.DEBUG if parsed_args.debug else logging.INFO)
		logger.addHandler(handler_file)

	try:
		result = sync(
			parsed_args.source,
			dest_root    = parsed_args.dest_root,
			report       = report,
			exclude      = parsed_args.exclude,
			clean_source = parsed_args.clean_source,
			dry_run      = parsed_args.dry_run,
		)
		if log_file:
			logger.info("")
			logger.info(f"Log file: {log_file}")
	finally:
		for handler in (handler_stdout, handler_stderr, handler_file):
			if handler:
				logger.removeHandler(handler)
		if handler_file:
			handler_file.close()
			if tmp_log_file is not None:
				assert log_file is not None
				shutil.move(tmp_log_file, log_file)

	if result is None or result.success:
		return 0
	return 1

def main() -> None:
	try:
		code = sync_cmd(sys.argv[1:])
	except KeyboardInterrupt:
		code = 1
	sys.exit(code)

if __name__ == "__main__":
	main()
