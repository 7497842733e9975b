from __future__ import annotations

import os
import shlex
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from .exceptions import CryptoSetupError, SysCallError, UnlockError
from .general import SysCommand, command_succeeds
from .models.encryption import CipherParams
from .output import debug, info


@contextmanager
def scoped_key_file(data: bytes | bytearray, directory: Path | None = None) -> Iterator[Path]:
	"""
	Materialises key material for exactly one cryptsetup call.

	The file is created exclusively with mode 0600 inside a private 0700
	directory, made read-only once written, and overwritten with zeros
	and unlinked when the block exits, whether or not it raised.
	"""
	key_dir = Path(tempfile.mkdtemp(prefix='voidstrap-', dir=directory))
	fd, name = tempfile.mkstemp(dir=key_dir)
	key_file = Path(name)

	try:
		with os.fdopen(fd, 'wb') as f:
			f.write(data)
			f.flush()
			os.fsync(f.fileno())

		key_file.chmod(0o400)
		yield key_file
	finally:
		_shred(key_file)
		key_dir.rmdir()


def _shred(path: Path) -> None:
	if not path.exists():
		return

	path.chmod(0o600)
	size = path.stat().st_size

	with path.open('r+b') as f:
		f.write(bytes(size))
		f.flush()
		os.fsync(f.fileno())

	path.unlink()


@dataclass
class Luks2:
	luks_dev_path: Path
	mapper_name: str | None = None

	@property
	def mapper_dev(self) -> Path | None:
		if self.mapper_name:
			return Path(f'/dev/mapper/{self.mapper_name}')
		return None

	def isLuks(self) -> bool:
		return command_succeeds(f'cryptsetup isLuks {self.luks_dev_path}')

	def erase(self) -> None:
		debug(f'Erasing luks partition: {self.luks_dev_path}')

		try:
			SysCommand(['cryptsetup', '--batch-mode', 'erase', str(self.luks_dev_path)])
		except SysCallError as err:
			raise CryptoSetupError(f'Could not erase luks header on {self.luks_dev_path}: {err.message}', err.exit_code) from err

	def encrypt(self, key_file: Path, params: CipherParams) -> None:
		debug(f'Luks2 encrypting: {self.luks_dev_path}')

		cmd = [
			'cryptsetup',
			'--batch-mode',
			'--verbose',
			*params.format_args(),
			'--key-file',
			str(key_file),
			'--use-urandom',
			'luksFormat',
			str(self.luks_dev_path),
		]

		debug(f'cryptsetup format: {shlex.join(cmd)}')

		try:
			result = SysCommand(cmd)
		except SysCallError as err:
			raise CryptoSetupError(f'Could not encrypt volume "{self.luks_dev_path}": {err.message}', err.exit_code) from err

		debug(f'cryptsetup luksFormat output: {result.decode()}')

	def _get_luks_uuid(self) -> str:
		command = f'cryptsetup luksUUID {self.luks_dev_path}'

		try:
			return SysCommand(command).decode()
		except SysCallError as err:
			info(f'Unable to get UUID for Luks device: {self.luks_dev_path}')
			raise CryptoSetupError(f'Could not read luks UUID of {self.luks_dev_path}', err.exit_code) from err

	def is_unlocked(self) -> bool:
		return (mapper_dev := self.mapper_dev) is not None and mapper_dev.is_symlink()

	def backing_device(self) -> Path | None:
		"""
		cryptsetup status output example:

		/dev/mapper/void_crypt is active.
		  type:    LUKS2
		  device:  /dev/nvme0n1p3
		"""
		if not self.mapper_name:
			raise ValueError('mapper name missing')

		try:
			output = SysCommand(['cryptsetup', 'status', self.mapper_name]).decode()
		except SysCallError as err:
			debug(f'No active mapping {self.mapper_name}: {err.message}')
			return None

		for line in output.splitlines():
			key, _, value = line.strip().partition(':')
			if key == 'device' and value.strip():
				return Path(value.strip())

		return None

	def unlock(self, key_file: Path) -> Path:
		"""
		Opens the container under its mapper name. A failed open
		leaves the header untouched, so retrying with the right key works.
		"""
		debug(f'Unlocking luks2 device: {self.luks_dev_path}')

		if not self.mapper_name or not (mapper_dev := self.mapper_dev):
			raise ValueError('mapper name missing')

		cmd = [
			'cryptsetup',
			'open',
			str(self.luks_dev_path),
			self.mapper_name,
			'--key-file',
			str(key_file),
			'--type',
			'luks2',
		]

		try:
			SysCommand(cmd)
		except SysCallError as err:
			raise UnlockError(f'Failed to open luks2 device {self.luks_dev_path}: {err.message}', err.exit_code) from err

		if not self.is_unlocked():
			raise UnlockError(f'Failed to open luks2 device: {self.luks_dev_path}')

		return mapper_dev

	def test_key(self, key_file: Path) -> None:
		debug(f'Verifying key against {self.luks_dev_path}')

		cmd = ['cryptsetup', 'open', '--test-passphrase', '--key-file', str(key_file), str(self.luks_dev_path)]

		try:
			SysCommand(cmd)
		except SysCallError as err:
			raise UnlockError(f'Key does not unlock {self.luks_dev_path}', err.exit_code) from err

	def add_key(self, key_file: Path, new_key_file: Path, key_slot: int | None = None) -> None:
		debug(f'Adding additional key to {self.luks_dev_path}')

		cmd = ['cryptsetup', '--batch-mode', 'luksAddKey', '--key-file', str(key_file)]

		if key_slot is not None:
			cmd.extend(('--key-slot', str(key_slot)))

		cmd.extend((str(self.luks_dev_path), str(new_key_file)))

		try:
			SysCommand(cmd)
		except SysCallError as err:
			raise CryptoSetupError(f'Could not add encryption key to {self.luks_dev_path}: {err.message}', err.exit_code) from err

	def crypttab(self, crypttab_path: Path, options: list[str]) -> None:
		debug(f'Adding crypttab entry for {self.mapper_name}')

		with open(crypttab_path, 'a') as crypttab:
			opt = ','.join(options)
			uuid = self._get_luks_uuid()
			row = f'{self.mapper_name} UUID={uuid} none {opt}\n'
			crypttab.write(row)


def close_mapper(mapper_name: str) -> None:
	debug(f'Closing crypt device {mapper_name}')

	try:
		SysCommand(['cryptsetup', 'close', mapper_name])
	except SysCallError as err:
		raise CryptoSetupError(f'Could not close {mapper_name}: {err.message}', err.exit_code) from err
