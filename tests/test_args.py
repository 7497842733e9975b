from pathlib import Path

import pytest
from pytest import MonkeyPatch

from voidstrap.lib import args as args_module
from voidstrap.lib.args import Arguments, ConfigHandler
from voidstrap.lib.exceptions import RequirementError, ValidationError
from voidstrap.lib.models.config import InstallConfig, VolumeConfig
from voidstrap.lib.models.device import FilesystemType
from voidstrap.lib.output import logger


def test_default_args() -> None:
	handler = ConfigHandler(['--device', '/dev/sda'])

	assert handler.args == Arguments(device=Path('/dev/sda'))
	assert handler.config.device == Path('/dev/sda')
	assert handler.config.mountpoint == Path('/mnt')
	assert [vol.name for vol in handler.config.volumes] == ['root', 'var', 'home']
	assert handler.config.use_token is True


def test_correct_parsing_args(config_fixture: Path, creds_fixture: Path) -> None:
	handler = ConfigHandler(
		[
			'--config',
			str(config_fixture),
			'--creds',
			str(creds_fixture),
			'--mountpoint',
			'/tmp/target',
			'--silent',
			'--dry-run',
			'--debug',
			'--no-token',
		]
	)

	assert handler.args == Arguments(
		config=config_fixture,
		creds=creds_fixture,
		mountpoint=Path('/tmp/target'),
		silent=True,
		dry_run=True,
		debug=True,
		no_token=True,
	)
	assert logger.verbose is True


def test_config_file_parsing(config_fixture: Path, creds_fixture: Path) -> None:
	handler = ConfigHandler(['--config', str(config_fixture), '--creds', str(creds_fixture)])
	config = handler.config

	assert config.device == Path('/dev/nvme0n1')
	assert config.boot_size_mib == 1024
	assert config.swap_size_mib == 8192
	assert config.vg_name == 'vault'
	assert config.mapper_dev == Path('/dev/mapper/vault_crypt')
	assert config.token_slot == 1

	srv = config.volumes[1]
	assert srv.fs_type == FilesystemType.Ext4
	assert srv.fs_label == 'data'
	assert config.volumes[0].fs_label == 'void_root'
	assert config.volumes[2].size_mib is None

	assert handler.recovery_passphrase() == 'correct horse battery staple'


def test_command_line_overrides_config(config_fixture: Path) -> None:
	handler = ConfigHandler(['--config', str(config_fixture), '--device', '/dev/sdb', '--mountpoint', '/target', '--no-token'])

	assert handler.config.device == Path('/dev/sdb')
	assert handler.config.mountpoint == Path('/target')
	assert handler.config.use_token is False


def test_silent_needs_config() -> None:
	handler = ConfigHandler(['--device', '/dev/sda', '--silent'])

	assert handler.args.silent is False


def test_missing_config_file(tmp_path: Path) -> None:
	with pytest.raises(RequirementError, match='Could not find file'):
		ConfigHandler(['--config', str(tmp_path / 'missing.json')])


def test_missing_device() -> None:
	with pytest.raises(ValidationError, match='Invalid configuration'):
		ConfigHandler([])


def test_invalid_config(tmp_path: Path) -> None:
	config = tmp_path / 'config.json'
	config.write_text('{"device": "/dev/sda", "token_slot": 3}')

	with pytest.raises(ValidationError, match='slot 1 or 2'):
		ConfigHandler(['--config', str(config)])


def test_silent_without_creds(config_fixture: Path) -> None:
	handler = ConfigHandler(['--config', str(config_fixture), '--silent'])

	with pytest.raises(RequirementError, match='--silent'):
		handler.recovery_passphrase()


def test_passphrase_prompt(config_fixture: Path, monkeypatch: MonkeyPatch) -> None:
	answers = iter(['', 'hunter2', 'hunter3', 'hunter2', 'hunter2'])
	monkeypatch.setattr(args_module.getpass, 'getpass', lambda prompt: next(answers))

	handler = ConfigHandler(['--config', str(config_fixture)])

	assert handler.recovery_passphrase() == 'hunter2'
	# asked only once per run
	assert handler.recovery_passphrase() == 'hunter2'



def test_volume_validation() -> None:
	with pytest.raises(ValueError, match='positive'):
		VolumeConfig(name='root', size_mib=0, mountpoint=Path('/'))

	with pytest.raises(ValueError, match='absolute'):
		VolumeConfig(name='var', mountpoint=Path('var'))

	with pytest.raises(ValueError, match='cannot have a mountpoint'):
		VolumeConfig(name='swap', fs_type=FilesystemType.LinuxSwap, mountpoint=Path('/swap'))


@pytest.mark.parametrize(
	'volumes, message',
	[
		(
			[VolumeConfig(name='root', size_mib=1024, mountpoint=Path('/')), VolumeConfig(name='root', mountpoint=Path('/home'))],
			'names must be unique',
		),
		(
			[VolumeConfig(name='root', size_mib=1024, mountpoint=Path('/')), VolumeConfig(name='efi', mountpoint=Path('/boot'))],
			'Mountpoints must be unique',
		),
		(
			[VolumeConfig(name='home', mountpoint=Path('/home'))],
			'mounted at /',
		),
		(
			[VolumeConfig(name='root', mountpoint=Path('/')), VolumeConfig(name='home', mountpoint=Path('/home'))],
			'Only one logical volume',
		),
		(
			[VolumeConfig(name='root', mountpoint=Path('/')), VolumeConfig(name='var', size_mib=1024, mountpoint=Path('/var'))],
			'must come last',
		),
	],
)
def test_invalid_volume_layouts(volumes: list[VolumeConfig], message: str) -> None:
	with pytest.raises(ValueError, match=message):
		InstallConfig(device=Path('/dev/sda'), volumes=volumes)


def test_sizes_must_be_sane() -> None:
	with pytest.raises(ValueError, match='boot_size_mib'):
		InstallConfig(device=Path('/dev/sda'), boot_size_mib=0)

	with pytest.raises(ValueError, match='swap_size_mib'):
		InstallConfig(device=Path('/dev/sda'), swap_size_mib=-1)

	assert InstallConfig(device=Path('/dev/sda'), swap_size_mib=0).swap_size_mib == 0
