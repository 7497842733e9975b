from __future__ import annotations

import secrets
from dataclasses import dataclass
from pathlib import Path

DEFAULT_KEY_BLOB_LENGTH = 2048


@dataclass(frozen=True)
class CipherParams:
	"""
	Fixed LUKS2 policy. Recovery tooling expects exactly these values,
	so they are never taken from user input.
	"""

	luks_type: str = 'luks2'
	cipher: str = 'aes-xts-plain64'
	key_size: int = 512
	hash_type: str = 'sha512'
	pbkdf: str = 'argon2id'
	iter_time: int = 5000
	sector_size: int = 4096
	label: str = 'void_crypt'

	def format_args(self) -> list[str]:
		return [
			'--type',
			self.luks_type,
			'--cipher',
			self.cipher,
			'--key-size',
			str(self.key_size),
			'--hash',
			self.hash_type,
			'--pbkdf',
			self.pbkdf,
			'--iter-time',
			str(self.iter_time),
			'--sector-size',
			str(self.sector_size),
			'--label',
			self.label,
		]


class EncryptionSecret:
	"""
	The composite unlock secret: an optional hardware token response
	followed by a random key blob. Both live in mutable buffers so
	they can be zeroed once the installation no longer needs them.
	"""

	def __init__(self, key_blob: bytes | bytearray, token_response: bytes | bytearray | None = None) -> None:
		if not key_blob:
			raise ValueError('The random key blob must not be empty')

		self._key_blob = bytearray(key_blob)
		self._token_response = bytearray(token_response) if token_response else None
		self._wiped = False

	def __repr__(self) -> str:
		return f'EncryptionSecret(token={self.has_token}, key_blob={len(self._key_blob)} bytes)'

	@classmethod
	def generate(
		cls,
		token_response: bytes | bytearray | None = None,
		length: int = DEFAULT_KEY_BLOB_LENGTH,
	) -> EncryptionSecret:
		return cls(secrets.token_bytes(length), token_response)

	@property
	def has_token(self) -> bool:
		return self._token_response is not None

	@property
	def wiped(self) -> bool:
		return self._wiped

	def composite(self) -> bytearray:
		if self._wiped:
			raise ValueError('Secret material has already been wiped')

		return bytearray(self._token_response or b'') + self._key_blob

	def wipe(self) -> None:
		for buffer in (self._key_blob, self._token_response):
			if buffer is not None:
				buffer[:] = bytes(len(buffer))
		self._wiped = True


@dataclass
class EncryptedContainer:
	partition: Path
	mapper_name: str

	@property
	def mapper_dev(self) -> Path:
		return Path(f'/dev/mapper/{self.mapper_name}')

	def is_open(self) -> bool:
		return self.mapper_dev.is_symlink() or self.mapper_dev.exists()
