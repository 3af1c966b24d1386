from dataclasses import dataclass
from typing import Dict
from svn_migrator.core.workflow import JobPhase
from svn_migrator.agents.base import BasePhase
from svn_migrator.agents.impl_clone import CloneSourcePhase
from svn_migrator.agents.impl_strategy import ApplyStrategyPhase
from svn_migrator.agents.impl_push import PushPhase

@dataclass
class PhaseRegistry:
    mapping: Dict[JobPhase, BasePhase]

    def get(self, phase: JobPhase) -> BasePhase:
        return self.mapping[phase]

    @staticmethod
    def default() -> "PhaseRegistry":
        return PhaseRegistry(mapping={
            JobPhase.CLONING: CloneSourcePhase(),
            JobPhase.APPLYING_STRATEGY: ApplyStrategyPhase(),
            JobPhase.PUSHING: PushPhase(),
        })
