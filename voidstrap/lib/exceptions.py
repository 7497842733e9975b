from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
	from .models.state import ProvisioningState


class VoidstrapError(Exception):
	pass


class ValidationError(VoidstrapError):
	"""
	Bad input caught before anything destructive happened.
	There is never any partial disk state to roll back.
	"""


class InvalidDeviceError(ValidationError):
	pass


class InsufficientSpaceError(ValidationError):
	pass


class RequirementError(ValidationError):
	pass


class InstallationAborted(ValidationError):
	pass


class SysCallError(Exception):
	def __init__(self, message: str, exit_code: int | None = None, worker_log: bytes = b'') -> None:
		super().__init__(message)
		self.message = message
		self.exit_code = exit_code
		self.worker_log = worker_log


class DestructiveOperationError(VoidstrapError):
	def __init__(self, message: str, exit_code: int | None = None) -> None:
		super().__init__(message)
		self.message = message
		self.exit_code = exit_code


class PartitioningError(DestructiveOperationError):
	pass


class CryptoSetupError(DestructiveOperationError):
	pass


class LVMError(DestructiveOperationError):
	pass


class FormatError(DestructiveOperationError):
	pass


class MountError(DestructiveOperationError):
	pass


class UnlockError(VoidstrapError):
	def __init__(self, message: str, exit_code: int | None = None) -> None:
		super().__init__(message)
		self.message = message
		self.exit_code = exit_code


class NonFatalWarning(VoidstrapError):
	pass


class ProvisioningFailed(VoidstrapError):
	def __init__(
		self,
		last_state: 'ProvisioningState',
		cause: BaseException,
		exit_code: int | None = None,
	) -> None:
		super().__init__(f'Provisioning failed after reaching "{last_state.value}": {cause}')
		self.last_state = last_state
		self.cause = cause
		self.exit_code = exit_code
