import os
import stat
import errno
import hashlib
import tempfile
import unittest
import doctest
from pathlib import Path
from unittest import mock

import msync

def hash_directory(root:Path, *, follow_links:bool=False, verbose:bool=False):
	if verbose:
		print("--- Hash Start ---")
	hasher = hashlib.sha256()
	for dir, dirnames, filenames in os.walk(root, followlinks=follow_links):
		dirnames.sort(key=lambda x: (os.path.normcase(x), x))
		filenames.sort(key=lambda x: (os.path.normcase(x), x))
		dir_relpath = os.path.normcase(os.path.relpath(dir, root))
		hasher.update(dir_relpath.encode())
		if verbose:
			print(dir_relpath)
		for file in filenames:
			file_path = os.path.join(dir, file)
			file_relpath = os.path.normcase(os.path.relpath(file_path, root))
			hasher.update(file_relpath.encode())
			if verbose:
				print(file_relpath)
			if os.path.islink(file_path):
				hasher.update(os.readlink(file_path).encode())
				continue
			with open(file_path, "rb") as f:
				while True:
					buf = f.read(4096)
					if not buf:
						break
					hasher.update(buf)
	if verbose:
		print("--- Hash End ---")
	return hasher.hexdigest()

def create_file_structure(root_dir:Path, structure:dict):
	'''Recursively creates a directory structure with files.'''
	root_dir.mkdir(parents=True, exist_ok=True)
	for name, content in structure.items():
		file_path = root_dir / name
		if isinstance(content, Path):
			# create symlink
			os.symlink(content, file_path)
		elif isinstance(content, dict):
			# create dir
			create_file_structure(file_path, content)
		elif isinstance(content, (tuple, list)):
			# Create file with modtime and content
			file_path.write_text(content[0] or "")
			mtime = float(content[1])
			os.utime(file_path, (mtime, mtime))
		elif content is None:
			# Create an empty file
			file_path.touch()
		else:
			# Create a file with content
			file_path.write_text(content)

def load_tests(loader, tests, ignore):
	tests.addTests(doctest.DocTestSuite(msync))
	return tests

class _OnOtherDevice:
	'''Stands in for the lstat result of a mount point.'''

	def __init__(self, st):
		self._st = st

	def __getattr__(self, name):
		return getattr(self._st, name)

	@property
	def st_dev(self):
		return self._st.st_dev + 1

def _deny_listing(*denied):
	'''Patches `os.scandir` so that the directories `denied` cannot be listed.'''
	denied = {os.fspath(path) for path in denied}
	real_scandir = os.scandir

	def fake_scandir(path=".", *args, **kwargs):
		if os.fspath(path) in denied:
			raise PermissionError(errno.EACCES, "Permission denied", os.fspath(path))
		return real_scandir(path, *args, **kwargs)

	return mock.patch("os.scandir", side_effect=fake_scandir)

class _TempTree(unittest.TestCase):
	def setUp(self):
		self._temp = tempfile.TemporaryDirectory()
		self.test_root = Path(self._temp.name).resolve()
		self.src = self.test_root / "src"
		self.out = self.test_root / "Desktop"
		self.out.mkdir()
		self.dst = self.out / "src rsync folder"
		self.reports = []

	def tearDown(self):
		for dir, dirnames, _ in os.walk(self.test_root):
			for dirname in dirnames:
				path = os.path.join(dir, dirname)
				if not os.path.islink(path):
					os.chmod(path, 0o755)
		self._temp.cleanup()

	def sync(self, **kwargs):
		return msync.sync(self.src, dest_root=self.out, report=self.reports.append, **kwargs)

class TestResolve(_TempTree):
	def test_resolve(self):
		create_file_structure(self.src, {"1.txt": None})

		expected = msync.SyncRequest(self.src, self.dst)
		self.assertEqual(msync.resolve(str(self.src), dest_root=self.out), expected)
		self.assertEqual(msync.resolve(f"'{self.src}'", dest_root=self.out), expected)
		self.assertEqual(msync.resolve(f' "{self.src}"\n', dest_root=self.out), expected)

		with mock.patch.object(Path, "home", return_value=self.test_root):
			self.assertEqual(msync.resolve(self.src).destination_path, self.test_root / "Desktop" / "src rsync folder")

	def test_symlinked_source(self):
		create_file_structure(self.test_root, {"real": {"1.txt": None}})
		os.symlink(self.test_root / "real", self.src)

		# named after the link, copied from its target
		request = msync.resolve(f"{self.src}{os.sep}", dest_root=self.out)
		self.assertEqual(request, msync.SyncRequest(self.test_root / "real", self.dst))

	def test_empty_input(self):
		for raw in (None, "", "   ", "''", '""'):
			with self.assertRaises(msync.EmptyInput):
				msync.resolve(raw, dest_root=self.out)

	def test_invalid_source(self):
		create_file_structure(self.test_root, {"file.txt": None})
		with self.assertRaises(msync.InvalidSource):
			msync.resolve(self.test_root / "missing", dest_root=self.out)
		with self.assertRaises(msync.InvalidSource):
			msync.resolve(self.test_root / "file.txt", dest_root=self.out)

	def test_destination_exists(self):
		create_file_structure(self.src, {})
		self.dst.mkdir()
		with self.assertRaises(msync.DestinationExists):
			msync.resolve(self.src, dest_root=self.out)

		# a dangling symlink also counts
		self.dst.rmdir()
		os.symlink(self.test_root / "nowhere", self.dst)
		with self.assertRaises(msync.DestinationExists):
			msync.resolve(self.src, dest_root=self.out)

class TestScan(_TempTree):
	def test_scan(self):
		create_file_structure(self.src, {
			"b": {
				"x.txt": "x",
			},
			"a.txt": "a",
			"link": Path("a.txt"),
			"dirlink": Path("b"),
			".DS_Store": None,
			"cache": {
				"y.txt": None,
			},
		})

		exclusion = msync.ExclusionRule(msync.DEFAULT_EXCLUDE + ("cache/",))
		entries = list(msync.scan(self.src, exclusion))
		self.assertEqual(
			[e.relative_path for e in entries],
			["a.txt", "b", "dirlink", "link", os.path.join("b", "x.txt")]
		)
		kinds = {e.relative_path: e.kind for e in entries}
		self.assertEqual(kinds["a.txt"], msync.EntryKind.FILE)
		self.assertEqual(kinds["b"], msync.EntryKind.DIRECTORY)
		self.assertEqual(kinds["link"], msync.EntryKind.SYMLINK)
		self.assertEqual(kinds["dirlink"], msync.EntryKind.SYMLINK)

		# a fresh scan starts over
		self.assertEqual(
			[(e.relative_path, e.kind) for e in msync.scan(self.src, exclusion)],
			[(e.relative_path, e.kind) for e in entries]
		)

	def test_scan_hardlinks(self):
		create_file_structure(self.src, {"a.txt": "same", "sub": {}})
		os.link(self.src / "a.txt", self.src / "sub" / "b.txt")

		entries = {e.relative_path: e for e in msync.scan(self.src, msync.ExclusionRule())}
		a = entries["a.txt"]
		b = entries[os.path.join("sub", "b.txt")]
		self.assertEqual(a.kind, msync.EntryKind.HARDLINK_MEMBER)
		self.assertEqual(b.kind, msync.EntryKind.HARDLINK_MEMBER)
		self.assertIsNotNone(a.hardlink_group_id)
		self.assertEqual(a.hardlink_group_id, b.hardlink_group_id)

	@unittest.skipUnless(hasattr(os, "mkfifo"), "requires os.mkfifo")
	def test_scan_skips_special_files(self):
		create_file_structure(self.src, {"1.txt": None})
		os.mkfifo(self.src / "pipe")

		result = msync.CopyResult()
		entries = list(msync.scan(self.src, msync.ExclusionRule(), result=result))
		self.assertEqual([e.relative_path for e in entries], ["1.txt"])
		self.assertEqual(result.skipped_special, 1)

class TestSync(_TempTree):
	def test_copy(self):
		create_file_structure(self.src, {
			"a": {
				"a": {
					"1.txt": ("one", 1_500_000_000),
				},
				"2.txt": "two",
				"run.sh": "#!/bin/sh\n",
			},
			"b": {},
			"3.txt": ("three", 1_000_000_000),
			"link": Path("3.txt"),
			"dangling": Path("does-not-exist"),
		})
		os.chmod(self.src / "a" / "2.txt", 0o640)
		os.chmod(self.src / "a" / "run.sh", 0o755)
		os.chmod(self.src / "b", 0o750)

		result = self.sync()

		self.assertTrue(result.success)
		self.assertEqual(self.reports, [msync.Success(6, "0.00 MB")])
		self.assertEqual(result.bytes_copied, len("one") + len("two") + len("#!/bin/sh\n") + len("three"))
		self.assertEqual(hash_directory(self.src), hash_directory(self.dst))

		for dir, dirnames, filenames in os.walk(self.src):
			for name in dirnames + filenames:
				src_path = os.path.join(dir, name)
				dst_path = os.path.join(self.dst, os.path.relpath(src_path, self.src))
				src_st = os.lstat(src_path)
				dst_st = os.lstat(dst_path)
				self.assertEqual(stat.S_IFMT(src_st.st_mode), stat.S_IFMT(dst_st.st_mode), src_path)
				if not stat.S_ISLNK(src_st.st_mode):
					self.assertEqual(stat.S_IMODE(src_st.st_mode), stat.S_IMODE(dst_st.st_mode), src_path)
				self.assertEqual(src_st.st_mtime_ns, dst_st.st_mtime_ns, src_path)

		self.assertEqual(os.readlink(self.dst / "link"), "3.txt")
		self.assertEqual(os.readlink(self.dst / "dangling"), "does-not-exist")

	def test_directory_metadata_applied_last(self):
		create_file_structure(self.src, {
			"d": {
				"1.txt": "1",
				"e": {
					"2.txt": "2",
				},
			},
			"ro": {
				"3.txt": "3",
			},
		})
		for path in (self.src / "d" / "e", self.src / "d", self.src):
			os.utime(path, (1_234_567_890, 1_234_567_890))
		os.chmod(self.src / "ro", 0o555)

		result = self.sync()

		self.assertTrue(result.success, result.errors)
		self.assertEqual(result.dirs_created, 3)
		for relpath in ("d", os.path.join("d", "e"), ""):
			self.assertEqual((self.dst / relpath).stat().st_mtime_ns, 1_234_567_890 * 10**9)
		self.assertEqual(stat.S_IMODE((self.dst / "ro").stat().st_mode), 0o555)
		self.assertEqual((self.dst / "ro" / "3.txt").read_text(), "3")

	def test_hardlinks(self):
		create_file_structure(self.src, {"a.txt": "shared content", "sub": {}})
		os.link(self.src / "a.txt", self.src / "sub" / "b.txt")

		result = self.sync()

		self.assertTrue(result.success)
		self.assertEqual(result.files_copied, 2)
		self.assertEqual(result.links_created, 1)
		self.assertEqual(result.bytes_copied, len("shared content"))
		a = os.stat(self.dst / "a.txt")
		b = os.stat(self.dst / "sub" / "b.txt")
		self.assertEqual((a.st_dev, a.st_ino), (b.st_dev, b.st_ino))

	def test_extended_attributes(self):
		create_file_structure(self.src, {"1.txt": "x"})
		try:
			os.setxattr(self.src / "1.txt", "user.msync.test", b"hello")
		except (AttributeError, OSError):
			self.skipTest("user extended attributes are not supported here")

		result = self.sync()

		self.assertTrue(result.success, result.errors)
		self.assertEqual(os.getxattr(self.dst / "1.txt", "user.msync.test"), b"hello")

	def test_exclusions(self):
		create_file_structure(self.src, {
			".DS_Store": None,
			"a": {
				".DS_Store": None,
				"1.txt": None,
			},
			"cache": {
				"2.txt": None,
			},
		})

		result = self.sync(exclude=["cache/"])

		self.assertTrue(result.success)
		self.assertEqual(result.files_copied, 1)
		self.assertTrue((self.dst / "a" / "1.txt").exists())
		self.assertFalse((self.dst / ".DS_Store").exists())
		self.assertFalse((self.dst / "a" / ".DS_Store").exists())
		self.assertFalse((self.dst / "cache").exists())
		# the source is left alone unless asked
		self.assertTrue((self.src / "a" / ".DS_Store").exists())

	def test_clean_source(self):
		create_file_structure(self.src, {
			".DS_Store": None,
			"a": {
				".DS_Store": None,
				"1.txt": None,
			},
		})

		result = self.sync(clean_source=True)

		self.assertTrue(result.success)
		self.assertEqual(result.purged, 2)
		self.assertFalse((self.src / ".DS_Store").exists())
		self.assertFalse((self.src / "a" / ".DS_Store").exists())
		self.assertTrue((self.src / "a" / "1.txt").exists())

	def test_clean_source_failure(self):
		create_file_structure(self.src, {".DS_Store": None, "1.txt": "1"})

		with mock.patch("os.unlink", side_effect=PermissionError(errno.EACCES, "Permission denied")):
			result = self.sync(clean_source=True)

		self.assertIsNone(result.error)
		self.assertEqual(result.purged, 0)
		self.assertEqual(result.files_copied, 1)
		self.assertEqual((self.dst / "1.txt").read_text(), "1")
		self.assertEqual([e.relative_path for e in result.errors], [".DS_Store"])
		self.assertTrue((self.src / ".DS_Store").exists())
		self.assertEqual(self.reports[0].reason, "Copy finished with 1 error(s)")

	def test_unreadable_directory(self):
		create_file_structure(self.src, {
			"1.txt": "1",
			"secret": {
				"a.txt": "a",
				"b.txt": "b",
			},
		})
		with _deny_listing(self.src / "secret"):
			result = self.sync()

		self.assertFalse(result.success)
		self.assertEqual(result.files_copied, 1)
		self.assertEqual([e.relative_path for e in result.errors], ["secret"])
		self.assertTrue((self.dst / "secret").is_dir())
		self.assertEqual(len(self.reports), 1)
		self.assertIsInstance(self.reports[0], msync.Failure)
		self.assertEqual(self.reports[0].reason, "Copy finished with 1 error(s)")

	def test_purge_and_reconcile_report_unreadable_directories(self):
		create_file_structure(self.src, {
			".DS_Store": None,
			"a": {
				".DS_Store": None,
			},
		})
		errors = []

		with _deny_listing(self.src / "a"):
			purged = msync.purge_source(self.src, msync.ExclusionRule(), on_error=lambda relpath, e: errors.append(relpath))
		self.assertEqual(purged, 1)
		self.assertEqual(errors, ["a"])
		self.assertTrue((self.src / "a" / ".DS_Store").exists())

		errors.clear()
		with _deny_listing(self.src / "a"):
			removed = msync.reconcile(self.src, msync.ExclusionRule(), on_error=lambda relpath, e: errors.append(relpath))
		self.assertEqual(removed, 0)
		self.assertEqual(errors, ["a"])

		with self.assertRaises(PermissionError):
			with _deny_listing(self.src / "a"):
				msync.reconcile(self.src, msync.ExclusionRule())

	def test_failed_directory(self):
		create_file_structure(self.src, {
			"1.txt": "1",
			"a": {
				"2.txt": "2",
				"3.txt": "3",
				"b": {
					"4.txt": "4",
				},
			},
		})
		blocked = self.dst / "a"
		real_mkdir = os.mkdir

		def fake_mkdir(path, *args, **kwargs):
			if Path(path) == blocked:
				raise PermissionError(errno.EACCES, "Permission denied", str(path))
			return real_mkdir(path, *args, **kwargs)

		with mock.patch("os.mkdir", side_effect=fake_mkdir):
			result = self.sync()

		# one error for the directory, none for its contents
		self.assertEqual([e.relative_path for e in result.errors], ["a"])
		self.assertEqual(result.files_copied, 1)
		self.assertFalse(blocked.exists())
		self.assertEqual(self.reports[0].detail_lines, [result.errors[0].message])

	@unittest.skipUnless(hasattr(os, "geteuid") and os.geteuid() == 0, "requires root")
	def test_ownership(self):
		create_file_structure(self.src, {
			"1.txt": "1",
			"d": {
				"2.txt": "2",
			},
			"link": Path("1.txt"),
		})
		os.chown(self.src / "1.txt", 1234, 5678)
		os.chown(self.src / "d", 2345, 6789)
		os.lchown(self.src / "link", 3456, 7890)

		result = self.sync()

		self.assertTrue(result.success, result.errors)
		for name, ids in (("1.txt", (1234, 5678)), ("d", (2345, 6789)), ("link", (3456, 7890))):
			st = os.lstat(self.dst / name)
			self.assertEqual((st.st_uid, st.st_gid), ids, name)

	def test_reconcile_is_idempotent(self):
		create_file_structure(self.dst, {
			".DS_Store": None,
			"a": {
				".DS_Store": None,
				"1.txt": "1",
			},
		})
		exclusion = msync.ExclusionRule()

		self.assertEqual(msync.reconcile(self.dst, exclusion), 2)
		hash_once = hash_directory(self.dst)
		self.assertEqual(msync.reconcile(self.dst, exclusion), 0)
		self.assertEqual(hash_directory(self.dst), hash_once)
		self.assertTrue((self.dst / "a" / "1.txt").exists())

	def test_reconcile_removes_extraneous(self):
		create_file_structure(self.dst, {
			"keep": {
				"1.txt": None,
			},
			"extra": {
				"2.txt": None,
			},
			"extra.txt": None,
		})
		source_paths = {"keep", os.path.join("keep", "1.txt")}

		removed = msync.reconcile(self.dst, msync.ExclusionRule(), source_paths=source_paths)

		self.assertEqual(removed, 2)
		self.assertEqual(sorted(os.listdir(self.dst)), ["keep"])
		self.assertTrue((self.dst / "keep" / "1.txt").exists())

	def test_destination_exists(self):
		create_file_structure(self.src, {"1.txt": "new"})
		create_file_structure(self.dst, {"1.txt": "old"})
		hash_before = hash_directory(self.dst)

		result = self.sync()

		self.assertIsInstance(result.error, msync.DestinationExists)
		self.assertEqual(len(self.reports), 1)
		self.assertIsInstance(self.reports[0], msync.Failure)
		self.assertEqual(self.reports[0].reason, "Destination folder already exists")
		self.assertEqual(hash_directory(self.dst), hash_before)
		self.assertEqual(result.files_copied, 0)

	def test_partial_failure(self):
		create_file_structure(self.src, {f"{i}.txt": str(i) for i in range(1, 6)})
		real_copy = msync._copy_file_content

		def flaky_copy(src, dst):
			if src.name == "3.txt":
				raise PermissionError(errno.EACCES, "Permission denied", str(src))
			return real_copy(src, dst)

		with mock.patch.object(msync, "_copy_file_content", side_effect=flaky_copy):
			result = self.sync()

		self.assertEqual(result.files_copied, 4)
		self.assertEqual(len(result.errors), 1)
		self.assertEqual(result.errors[0].relative_path, "3.txt")
		self.assertIsInstance(result.errors[0].cause, msync.PerEntryCopyFailure)
		self.assertFalse((self.dst / "3.txt").exists())
		self.assertEqual(len(self.reports), 1)
		self.assertIsInstance(self.reports[0], msync.Failure)
		self.assertEqual(len(self.reports[0].detail_lines), 1)
		self.assertIn("3.txt", self.reports[0].detail_lines[0])

	def test_attribute_failure(self):
		create_file_structure(self.src, {"1.txt": "1", "2.txt": "2"})

		with mock.patch("os.utime", side_effect=PermissionError(errno.EPERM, "Operation not permitted")):
			result = self.sync()

		self.assertEqual(result.files_copied, 2)
		self.assertEqual((self.dst / "1.txt").read_text(), "1")
		self.assertTrue(result.errors)
		self.assertTrue(all(isinstance(e.cause, msync.AttributeCopyFailed) for e in result.errors))
		self.assertIsInstance(self.reports[0], msync.Failure)

	def test_destination_volume_full(self):
		create_file_structure(self.src, {"1.txt": "1", "2.txt": "2"})

		with mock.patch.object(msync, "_copy_file_content", side_effect=OSError(errno.ENOSPC, "No space left on device")):
			result = self.sync()

		self.assertIsInstance(result.error, msync.CatastrophicIOFailure)
		self.assertEqual(result.files_copied, 0)
		self.assertEqual(len(self.reports), 1)
		self.assertEqual(self.reports[0].reason, "Copy aborted")

	def test_mount_boundary(self):
		create_file_structure(self.src, {
			"1.txt": None,
			"mnt": {
				"2.txt": None,
			},
		})
		mounted = os.path.join(self.src, "mnt")
		real_lstat = os.lstat

		def fake_lstat(path, *args, **kwargs):
			st = real_lstat(path, *args, **kwargs)
			if os.fspath(path) == mounted:
				return _OnOtherDevice(st)
			return st

		with mock.patch("os.lstat", side_effect=fake_lstat):
			result = self.sync()

		self.assertTrue(result.success, result.errors)
		self.assertEqual(result.skipped_mounts, 1)
		self.assertTrue((self.dst / "1.txt").exists())
		self.assertFalse((self.dst / "mnt").exists())

	def test_destination_inside_source(self):
		create_file_structure(self.src, {"1.txt": "1"})

		result = msync.sync(self.src, dest_root=self.src, report=self.reports.append)

		dst = self.src / "src rsync folder"
		self.assertTrue(result.success, result.errors)
		self.assertEqual(result.files_copied, 1)
		self.assertEqual(sorted(os.listdir(dst)), ["1.txt"])

	def test_dry_run(self):
		create_file_structure(self.src, {"a": {"1.txt": "12345"}, "2.txt": "12"})

		result = self.sync(dry_run=True)

		self.assertTrue(result.success)
		self.assertEqual(self.reports, [msync.Success(2, "0.00 MB")])
		self.assertEqual(result.bytes_copied, 7)
		self.assertFalse(self.dst.exists())

class TestSummarize(unittest.TestCase):
	def test_success(self):
		result = msync.CopyResult()
		result.files_copied = 3
		result.bytes_copied = 1_000_000_000
		self.assertEqual(msync.summarize(result), msync.Success(3, "1.00 GB"))

		result.bytes_copied = 999_999_999
		self.assertEqual(msync.summarize(result), msync.Success(3, "1000.00 MB"))

	def test_failure_is_truncated(self):
		result = msync.CopyResult()
		for i in range(12):
			result.tally_failure(f"{i}.txt", msync.PerEntryCopyFailure("PermissionError: x"))

		outcome = msync.summarize(result)

		self.assertIsInstance(outcome, msync.Failure)
		self.assertEqual(outcome.reason, "Copy finished with 12 error(s)")
		self.assertEqual(len(outcome.detail_lines), msync.MAX_DETAIL_LINES)
		self.assertEqual(outcome.detail_lines[0], "0.txt: PermissionError: x")

	def test_terminal_error(self):
		result = msync.CopyResult()
		result.error = msync.InvalidSource("Source does not exist: /nope")

		outcome = msync.summarize(result)

		self.assertEqual(outcome, msync.Failure("Invalid source folder", ["Source does not exist: /nope"]))

class TestCommandLine(_TempTree):
	def test_empty_input(self):
		report = mock.Mock()
		self.assertEqual(msync.sync_cmd([], report=report), 0)
		self.assertEqual(msync.sync_cmd([""], report=report), 0)
		self.assertEqual(msync.sync_cmd(['""', "-qq"], report=report), 0)
		self.assertEqual(msync.sync_cmd(["--source", "  "], report=report), 0)
		report.assert_not_called()

	def test_success(self):
		create_file_structure(self.src, {"1.txt": "hello"})

		code = msync.sync_cmd([str(self.src), "--dest-root", str(self.out), "-qq"], report=self.reports.append)

		self.assertEqual(code, 0)
		self.assertEqual(self.reports, [msync.Success(1, "0.00 MB")])
		self.assertEqual((self.dst / "1.txt").read_text(), "hello")

	def test_source_flag(self):
		create_file_structure(self.src, {"1.txt": "hello"})

		code = msync.sync_cmd(["--source", f"'{self.src}'", "--dest-root", str(self.out), "-qq"], report=self.reports.append)

		self.assertEqual(code, 0)
		self.assertTrue((self.dst / "1.txt").exists())

	def test_failures(self):
		code = msync.sync_cmd([str(self.test_root / "missing"), "--dest-root", str(self.out), "-qq"], report=self.reports.append)
		self.assertEqual(code, 1)
		self.assertEqual(len(self.reports), 1)
		self.assertEqual(self.reports[0].reason, "Invalid source folder")

		create_file_structure(self.src, {f"{i}.txt": None for i in range(5)})
		real_copy = msync._copy_file_content

		def flaky_copy(src, dst):
			if src.name == "0.txt":
				raise PermissionError(errno.EACCES, "Permission denied", str(src))
			return real_copy(src, dst)

		with mock.patch.object(msync, "_copy_file_content", side_effect=flaky_copy):
			code = msync.sync_cmd([str(self.src), "--dest-root", str(self.out), "-qq"], report=self.reports.append)
		self.assertEqual(code, 1)
		self.assertIsInstance(self.reports[1], msync.Failure)

	def test_log_file(self):
		create_file_structure(self.src, {"1.txt": "hello"})
		log_file = self.test_root / "msync.log"

		code = msync.sync_cmd([str(self.src), "--dest-root", str(self.out), "-qq", "--log", str(log_file)])

		self.assertEqual(code, 0)
		log = log_file.read_text(encoding="utf-8")
		self.assertIn("INFO: + 1.txt", log)
		self.assertIn("Copied 1 files (0.00 MB).", log)

if __name__ == "__main__":
	try:
		unittest.main()
	except SystemExit as e:
		pass
