from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from ..exceptions import NonFatalWarning


class ProvisioningState(Enum):
	Unvalidated = 'unvalidated'
	Planned = 'planned'
	PartitionsWritten = 'partitions-written'
	ContainerOpen = 'container-open'
	VolumesCreated = 'volumes-created'
	Formatted = 'formatted'
	Mounted = 'mounted'
	RollingBack = 'rolling-back'
	Failed = 'failed'


@dataclass
class ProvisioningReport:
	state: ProvisioningState = ProvisioningState.Unvalidated
	last_completed: ProvisioningState = ProvisioningState.Unvalidated
	warnings: list[NonFatalWarning] = field(default_factory=list)
	exit_code: int | None = None

	@property
	def succeeded(self) -> bool:
		return self.state == ProvisioningState.Mounted
