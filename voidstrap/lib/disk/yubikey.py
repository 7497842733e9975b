from __future__ import annotations

import base64
import re
import secrets

from ..exceptions import RequirementError, SysCallError, UnlockError
from ..general import SysCommand, clear_vt100_escape_codes_from_str
from ..output import debug, error, info

CHALLENGE_BYTES = 32

_HEX_LINE = re.compile(rb'[0-9a-fA-F]+')


class YubiKey:
	"""
	HMAC-SHA1 challenge/response on one of the two OTP slots.
	Responses are secret material and never reach the log.
	"""

	def __init__(self, slot: int = 2) -> None:
		self.slot = slot

	def detect(self) -> str:
		"""
		ykinfo output example:

		version: 5.4.3
		"""
		try:
			output = SysCommand('ykinfo -v').decode()
		except SysCallError as err:
			error(f'No YubiKey found: {err.message}')
			raise RequirementError('No YubiKey detected, insert the token or pass --no-token') from err

		version = clear_vt100_escape_codes_from_str(output).removeprefix('version:').strip()
		info(f'Found YubiKey, firmware {version}')
		return version

	def program_slot(self) -> None:
		info(f'Configuring YubiKey slot {self.slot} for challenge/response')

		cmd = [
			'ykpersonalize',
			f'-{self.slot}',
			'-ochal-resp',
			'-ochal-hmac',
			'-ohmac-lt64',
			'-oserial-api-visible',
			'-y',
		]

		try:
			SysCommand(cmd)
		except SysCallError as err:
			raise RequirementError(f'Failed to configure YubiKey slot {self.slot}: {err.message}') from err

	@staticmethod
	def generate_challenge() -> str:
		return base64.b64encode(secrets.token_bytes(CHALLENGE_BYTES)).decode()

	def response(self, challenge: str) -> bytearray:
		debug(f'Requesting challenge response from YubiKey slot {self.slot}')

		try:
			worker = SysCommand(['ykchalresp', f'-{self.slot}', challenge])
		except SysCallError as err:
			raise UnlockError(f'YubiKey did not answer the challenge on slot {self.slot}', err.exit_code) from err

		# stderr is merged into the output, the response is the last hex line and
		# the unlock helper pipes it without its trailing newline
		lines = [line.strip() for line in worker.output().splitlines()]
		response = bytearray(next((line for line in reversed(lines) if _HEX_LINE.fullmatch(line)), b''))

		if not response:
			raise UnlockError(f'YubiKey returned an empty response on slot {self.slot}')

		return response
