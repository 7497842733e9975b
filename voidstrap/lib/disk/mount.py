from __future__ import annotations

from pathlib import Path

from ..exceptions import MountError, NonFatalWarning, SysCallError
from ..general import SysCommand
from ..models.mount import MountEntry, MountPlan
from ..output import debug, info, warn
from .utils import get_lsblk_by_mountpoint


class MountOrchestrator:
	"""
	Mounts a plan in order and undoes it again. Everything that happens
	during teardown is best effort: problems end up in ``warnings``
	instead of being raised.
	"""

	def __init__(self) -> None:
		self.warnings: list[NonFatalWarning] = []

	def _warn(self, message: str) -> None:
		warn(message)
		self.warnings.append(NonFatalWarning(message))

	def mount(self, plan: MountPlan) -> None:
		for entry in plan:
			self._mount(entry)

	def _mount(self, entry: MountEntry) -> None:
		try:
			entry.target.mkdir(parents=True, exist_ok=True)
		except OSError as err:
			raise MountError(f'Could not create mountpoint {entry.target}: {err}') from err

		cmd = ['mount']

		if entry.options:
			cmd.extend(('-o', ','.join(entry.options)))

		cmd.extend(('-t', entry.fs_type.fs_type_mount, str(entry.source), str(entry.target)))

		debug(f'Mounting {entry.source}: {" ".join(cmd)}')

		try:
			SysCommand(cmd)
		except SysCallError as err:
			raise MountError(f'Could not mount {entry.source} at {entry.target}: {err.message}', err.exit_code) from err

		info(f'Mounted {entry.source} at {entry.target}')

	def activate_swap(self, paths: list[Path]) -> None:
		for path in paths:
			try:
				SysCommand(['swapon', str(path)])
				info(f'Enabled swap on {path}')
			except SysCallError as err:
				self._warn(f'Could not enable swap {path}: {err.message}')

	def deactivate_swap(self, paths: list[Path]) -> None:
		for path in paths:
			try:
				SysCommand(['swapoff', str(path)])
			except SysCallError as err:
				self._warn(f'Could not disable swap {path}: {err.message}')

	def unmount_all(self, prefix: Path) -> None:
		try:
			mounted = get_lsblk_by_mountpoint(prefix, as_prefix=True)
		except SysCallError as err:
			self._warn(f'Could not determine what is mounted below {prefix}: {err.message}')
			return

		if not mounted:
			debug(f'Nothing mounted below {prefix}')
			return

		debug(f'Unmounting {prefix} recursively')

		try:
			SysCommand(['umount', '-R', str(prefix)])
		except SysCallError as err:
			self._warn(f'Could not unmount {prefix}: {err.message}')
