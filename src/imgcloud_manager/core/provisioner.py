"""Threshold-driven scale-up/scale-down decisions."""

import logging
from typing import Callable, List, Optional

from .context import ManagerContext
from .types import ProvisionAction, ProvisionDecision


logger = logging.getLogger(__name__)


class Provisioner:
    """Compares system load with the thresholds once per provisioning cycle.
    
    At most one instance is allocated or deallocated per cycle. Scale-down
    always picks the first instance in registry order rather than the
    least-loaded one.
    """
    
    def __init__(
        self,
        context: ManagerContext,
        system_load: Callable[[], float],
        history_size: int = 100
    ):
        """Initialize provisioner.
        
        Args:
            context: Shared manager context
            system_load: Returns the current aggregate load
            history_size: Number of past decisions to keep
        """
        self.context = context
        self.system_load = system_load
        self.history_size = history_size
        self.decisions: List[ProvisionDecision] = []
    
    @property
    def last_decision(self) -> Optional[ProvisionDecision]:
        return self.decisions[-1] if self.decisions else None
    
    def decide(self, system_load: float, instance_count: int) -> ProvisionAction:
        """Pure threshold decision; both thresholds are exclusive."""
        config = self.context.config
        
        if system_load > config.allocation_threshold and instance_count < config.max_instances:
            return ProvisionAction.ALLOCATE
        if system_load < config.deallocation_threshold and instance_count > config.min_instances:
            return ProvisionAction.DEALLOCATE
        return ProvisionAction.NONE
    
    def provision(self) -> ProvisionDecision:
        """Run one provisioning cycle."""
        registry = self.context.registry
        load = self.system_load()
        count = len(registry)
        
        action = self.decide(load, count)
        decision = ProvisionDecision(action=action, system_load=load, instance_count=count)
        logger.info(f"System load: {load:.3f} across {count} instances -> {action.value}")
        
        if action == ProvisionAction.ALLOCATE:
            self.context.request_allocation()
        elif action == ProvisionAction.DEALLOCATE:
            victim = registry.first()
            decision.target_instance_id = victim.id
            registry.remove_by_id(victim.id)
            self.context.request_deallocation(victim)
        
        self.decisions.append(decision)
        if len(self.decisions) > self.history_size:
            del self.decisions[:-self.history_size]
        
        return decision
