import stat
from pathlib import Path

import pytest
from pytest import MonkeyPatch

from conftest import FakeCommands
from voidstrap.lib.disk.encryption import EncryptionProvisioner
from voidstrap.lib.exceptions import CryptoSetupError, UnlockError
from voidstrap.lib.luks import Luks2, scoped_key_file
from voidstrap.lib.models.encryption import CipherParams, EncryptedContainer, EncryptionSecret

PARTITION = Path('/dev/nvme0n1p3')

STATUS = """\
/dev/mapper/void_crypt is active.
  type:    LUKS2
  cipher:  aes-xts-plain64
  keysize: 512 bits
  device:  {device}
  sector size:  4096
"""


class KeyFileSpy:
	"""Captures what cryptsetup would have read from its key files."""

	def __init__(self) -> None:
		self.files: list[Path] = []
		self.contents: list[bytes] = []
		self.modes: list[int] = []

	def read(self, path: str) -> None:
		key_file = Path(path)
		self.files.append(key_file)
		self.contents.append(key_file.read_bytes())
		self.modes.append(stat.S_IMODE(key_file.stat().st_mode))

	def after_key_file(self, argv: list[str]) -> bytes:
		self.read(argv[argv.index('--key-file') + 1])
		return b''

	def last_argument(self, argv: list[str]) -> bytes:
		self.read(argv[-1])
		return b''


@pytest.fixture
def secret() -> EncryptionSecret:
	return EncryptionSecret(b'\xaa' * 64, token_response=b'0123abcd')


@pytest.fixture
def spy() -> KeyFileSpy:
	return KeyFileSpy()


def test_format(commands: FakeCommands, secret: EncryptionSecret, spy: KeyFileSpy) -> None:
	commands.on('cryptsetup', 'luksFormat', output=spy.after_key_file)

	container = EncryptionProvisioner().format(PARTITION, secret, CipherParams())

	assert container == EncryptedContainer(PARTITION, 'void_crypt')
	assert container.mapper_dev == Path('/dev/mapper/void_crypt')

	argv = commands.find('cryptsetup', 'luksFormat')[0]
	assert argv[-1] == str(PARTITION)
	for flag, value in [('--cipher', 'aes-xts-plain64'), ('--key-size', '512'), ('--pbkdf', 'argon2id'), ('--sector-size', '4096')]:
		assert argv[argv.index(flag) + 1] == value

	# token response first, then the random blob
	assert spy.contents == [b'0123abcd' + b'\xaa' * 64]
	assert spy.modes[0] & 0o077 == 0

	assert not spy.files[0].exists()
	assert not spy.files[0].parent.exists()


def test_format_failure_still_removes_key_file(commands: FakeCommands, secret: EncryptionSecret, spy: KeyFileSpy) -> None:
	def fail(argv: list[str]) -> bytes:
		spy.after_key_file(argv)
		return b'Cannot format device /dev/nvme0n1p3 in use.'

	commands.on('cryptsetup', 'luksFormat', output=fail, exit_code=5)

	with pytest.raises(CryptoSetupError) as exc_info:
		EncryptionProvisioner().format(PARTITION, secret)

	assert exc_info.value.exit_code == 5
	assert not spy.files[0].exists()


def test_open(commands: FakeCommands, secret: EncryptionSecret, monkeypatch: MonkeyPatch) -> None:
	monkeypatch.setattr(Luks2, 'is_unlocked', lambda self: True)

	mapper = EncryptionProvisioner().open(PARTITION, secret)

	assert mapper == Path('/dev/mapper/void_crypt')
	argv = commands.find('cryptsetup', 'open')[0]
	assert argv[:4] == ['cryptsetup', 'open', str(PARTITION), 'void_crypt']


def test_open_with_wrong_secret_can_be_retried(commands: FakeCommands, secret: EncryptionSecret, monkeypatch: MonkeyPatch) -> None:
	monkeypatch.setattr(Luks2, 'is_unlocked', lambda self: True)
	commands.on('cryptsetup', 'open', output=b'No key available with this passphrase.', exit_code=2)

	wrong = EncryptionSecret(b'\xbb' * 64)

	with pytest.raises(UnlockError) as exc_info:
		EncryptionProvisioner().open(PARTITION, wrong)

	assert exc_info.value.exit_code == 2

	# nothing but the failed open was attempted against the header
	assert commands.programs() == ['cryptsetup']

	commands.on('cryptsetup', 'open', exit_code=0)
	assert EncryptionProvisioner().open(PARTITION, secret) == Path('/dev/mapper/void_crypt')


def test_open_already_active_verifies_secret(commands: FakeCommands, secret: EncryptionSecret, monkeypatch: MonkeyPatch) -> None:
	monkeypatch.setattr(EncryptedContainer, 'is_open', lambda self: True)
	commands.on('cryptsetup', 'status', output=STATUS.format(device=PARTITION).encode())

	assert EncryptionProvisioner().open(PARTITION, secret) == Path('/dev/mapper/void_crypt')
	assert commands.find('cryptsetup', 'open', '--test-passphrase')

	commands.on('cryptsetup', '--test-passphrase', exit_code=2)

	with pytest.raises(UnlockError):
		EncryptionProvisioner().open(PARTITION, EncryptionSecret(b'\xbb' * 64))


def test_add_recovery_key(commands: FakeCommands, secret: EncryptionSecret, spy: KeyFileSpy) -> None:
	def both(argv: list[str]) -> bytes:
		spy.after_key_file(argv)
		spy.last_argument(argv)
		return b''

	commands.on('cryptsetup', 'luksAddKey', output=both)

	EncryptionProvisioner().add_recovery_key(PARTITION, secret, 'correct horse battery staple')

	assert spy.contents == [b'0123abcd' + b'\xaa' * 64, b'correct horse battery staple']
	assert commands.find('cryptsetup', 'luksAddKey')[0][-2] == str(PARTITION)
	assert not any(path.exists() for path in spy.files)


def test_empty_recovery_passphrase(commands: FakeCommands, secret: EncryptionSecret) -> None:
	with pytest.raises(UnlockError):
		EncryptionProvisioner().add_recovery_key(PARTITION, secret, '')

	assert commands.calls == []


def test_enroll_token_key(commands: FakeCommands, secret: EncryptionSecret, spy: KeyFileSpy) -> None:
	commands.on('cryptsetup', 'luksAddKey', output=spy.last_argument)

	EncryptionProvisioner().enroll_token_key(PARTITION, secret, bytearray(b'0123abcd'))

	assert spy.contents == [b'0123abcd']


def test_add_key_failure(commands: FakeCommands, secret: EncryptionSecret) -> None:
	commands.on('cryptsetup', 'luksAddKey', exit_code=2)

	with pytest.raises(CryptoSetupError) as exc_info:
		EncryptionProvisioner().add_recovery_key(PARTITION, secret, 'hunter2')

	assert exc_info.value.exit_code == 2


def test_close(commands: FakeCommands) -> None:
	EncryptionProvisioner('vault_crypt').close()
	EncryptionProvisioner().close('other_crypt')

	assert commands.lines == ['cryptsetup close vault_crypt', 'cryptsetup close other_crypt']


def test_scoped_key_file_is_removed_on_error(tmp_path: Path) -> None:
	with pytest.raises(RuntimeError):
		with scoped_key_file(b'secret', tmp_path) as key_file:
			assert key_file.read_bytes() == b'secret'
			raise RuntimeError('cryptsetup went away')

	assert not key_file.exists()
	assert list(tmp_path.iterdir()) == []


def test_scoped_key_file_lives_in_private_directory(tmp_path: Path) -> None:
	with scoped_key_file(bytearray(b'secret'), tmp_path) as key_file:
		assert stat.S_IMODE(key_file.parent.stat().st_mode) == 0o700
		assert stat.S_IMODE(key_file.stat().st_mode) == 0o400


def test_open_refuses_mapper_of_another_device(commands: FakeCommands, secret: EncryptionSecret, monkeypatch: MonkeyPatch) -> None:
	monkeypatch.setattr(EncryptedContainer, 'is_open', lambda self: True)
	commands.on('cryptsetup', 'status', output=STATUS.format(device='/dev/sdb3').encode())

	with pytest.raises(UnlockError, match='busy'):
		EncryptionProvisioner().open(PARTITION, secret)

	assert commands.lines == ['cryptsetup status void_crypt']


def test_backing_device_of_inactive_mapper(commands: FakeCommands) -> None:
	commands.on('cryptsetup', 'status', output=b'/dev/mapper/void_crypt is inactive.', exit_code=4)

	assert Luks2(PARTITION, 'void_crypt').backing_device() is None
