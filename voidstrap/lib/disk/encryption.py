from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from ..exceptions import UnlockError
from ..luks import Luks2, close_mapper, scoped_key_file
from ..models.encryption import CipherParams, EncryptedContainer, EncryptionSecret
from ..output import debug, info


class EncryptionProvisioner:
	"""
	Drives cryptsetup for the system partition. Every call that needs
	key material gets its own scoped key file, which is shredded as
	soon as cryptsetup returns.
	"""

	def __init__(self, mapper_name: str = 'void_crypt', key_dir: Path | None = None) -> None:
		self.mapper_name = mapper_name
		self._key_dir = key_dir

	@contextmanager
	def _key_file(self, key: bytearray) -> Iterator[Path]:
		try:
			with scoped_key_file(key, self._key_dir) as key_file:
				yield key_file
		finally:
			key[:] = bytes(len(key))

	def format(
		self,
		partition: Path,
		secret: EncryptionSecret,
		params: CipherParams = CipherParams(),
	) -> EncryptedContainer:
		info(f'Creating LUKS2 container on {partition}')

		luks = Luks2(partition, self.mapper_name)

		with self._key_file(secret.composite()) as key_file:
			luks.encrypt(key_file, params)

		return EncryptedContainer(partition, self.mapper_name)

	def open(self, partition: Path, secret: EncryptionSecret) -> Path:
		container = EncryptedContainer(partition, self.mapper_name)
		luks = Luks2(partition, self.mapper_name)

		active = container.is_open()

		if active:
			backing = luks.backing_device()

			if backing is None or backing.resolve() != partition.resolve():
				raise UnlockError(f'{container.mapper_dev} is busy, it is backed by {backing or "an unknown device"} instead of {partition}')

		with self._key_file(secret.composite()) as key_file:
			if active:
				# already active on this partition, only make sure the secret matches
				debug(f'{container.mapper_dev} is already active, verifying the secret')
				luks.test_key(key_file)
				return container.mapper_dev

			info(f'Opening {partition} as {self.mapper_name}')
			return luks.unlock(key_file)

	def add_recovery_key(self, partition: Path, secret: EncryptionSecret, passphrase: str) -> None:
		if not passphrase:
			raise UnlockError('An empty recovery passphrase cannot be added')

		info(f'Adding recovery passphrase to {partition}')
		self._add_key(partition, secret, bytearray(passphrase.encode()))

	def enroll_token_key(self, partition: Path, secret: EncryptionSecret, token_response: bytes | bytearray) -> None:
		"""
		Registers the bare token response in its own key slot, that is
		what the boot-time unlock helper feeds to cryptsetup.
		"""
		info(f'Enrolling hardware token key on {partition}')
		self._add_key(partition, secret, bytearray(token_response))

	def _add_key(self, partition: Path, secret: EncryptionSecret, new_key: bytearray) -> None:
		luks = Luks2(partition, self.mapper_name)

		try:
			with (
				self._key_file(secret.composite()) as key_file,
				self._key_file(new_key) as new_key_file,
			):
				luks.add_key(key_file, new_key_file)
		finally:
			new_key[:] = bytes(len(new_key))

	def close(self, mapper_name: str | None = None) -> None:
		close_mapper(mapper_name or self.mapper_name)
