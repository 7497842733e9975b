import json
import subprocess
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest
from pytest import MonkeyPatch

from voidstrap.lib import general
from voidstrap.lib.output import logger

Output = bytes | Callable[[list[str]], bytes]


@dataclass
class _Rule:
	tokens: tuple[str, ...]
	output: Output
	exit_code: int

	def matches(self, argv: list[str]) -> bool:
		return argv[0] == self.tokens[0] and all(token in argv[1:] for token in self.tokens[1:])


class FakeCommands:
	"""
	Stands in for the process runner. Rules match on the program name
	plus any further tokens that have to appear in the argv; rules added
	later win. Unmatched commands succeed with empty output.
	"""

	def __init__(self) -> None:
		self.calls: list[list[str]] = []
		self._rules: list[_Rule] = []

	def on(self, *tokens: str, output: Output = b'', exit_code: int = 0) -> 'FakeCommands':
		self._rules.append(_Rule(tokens, output, exit_code))
		return self

	def __call__(
		self,
		cmd: list[str],
		input_data: bytes | None = None,
		environment_vars: dict[str, str] | None = None,
	) -> subprocess.CompletedProcess[bytes]:
		argv = [Path(cmd[0]).name, *cmd[1:]]
		self.calls.append(argv)

		for rule in reversed(self._rules):
			if rule.matches(argv):
				output = rule.output(argv) if callable(rule.output) else rule.output
				return subprocess.CompletedProcess(argv, rule.exit_code, stdout=output)

		return subprocess.CompletedProcess(argv, 0, stdout=b'')

	@property
	def lines(self) -> list[str]:
		return [' '.join(argv) for argv in self.calls]

	def find(self, *tokens: str) -> list[list[str]]:
		probe = _Rule(tokens, b'', 0)
		return [argv for argv in self.calls if probe.matches(argv)]

	def programs(self) -> list[str]:
		return [argv[0] for argv in self.calls]


@pytest.fixture
def commands(monkeypatch: MonkeyPatch) -> FakeCommands:
	fake = FakeCommands()
	monkeypatch.setattr(general, '_exec', fake)
	return fake


@pytest.fixture(autouse=True)
def _log_directory(tmp_path: Path, monkeypatch: MonkeyPatch) -> None:
	monkeypatch.setattr(logger, '_path', tmp_path / 'log')
	monkeypatch.setattr(logger, 'verbose', False)


def lsblk_device(
	path: str,
	size: int,
	dev_type: str = 'disk',
	log_sec: int = 512,
	mountpoints: list[str | None] | None = None,
	children: list[dict[str, Any]] | None = None,
	fstype: str | None = None,
) -> dict[str, Any]:
	return {
		'name': path,
		'path': path,
		'pkname': None,
		'log-sec': log_sec,
		'size': size,
		'type': dev_type,
		'fstype': fstype,
		'uuid': None,
		'mountpoints': mountpoints or [None],
		'children': children or [],
	}


def lsblk_output(*devices: dict[str, Any]) -> bytes:
	return json.dumps({'blockdevices': list(devices)}).encode()


def vgs_output(*groups: tuple[str, int, int]) -> bytes:
	entries = [{'vg_name': name, 'vg_uuid': f'uuid-{name}', 'vg_size': f'{size}B', 'vg_free': f'{free}B'} for name, size, free in groups]
	return json.dumps({'report': [{'vg': entries}]}).encode()


@pytest.fixture(scope='session')
def config_fixture() -> Path:
	return Path(__file__).parent / 'data' / 'test_config.json'


@pytest.fixture(scope='session')
def creds_fixture() -> Path:
	return Path(__file__).parent / 'data' / 'test_creds.json'
