"""Retirement of dead instances and self-healing replacement."""

import logging

from .context import ManagerContext
from .types import Instance


logger = logging.getLogger(__name__)


class FailureDetector:
    """Retires instances judged dead and keeps the pool at its minimum size."""
    
    def __init__(self, context: ManagerContext):
        self.context = context
    
    def mark_dead(self, instance: Instance) -> bool:
        """Retire ``instance``.
        
        Removes it from the registry, requests deprovisioning in the
        background and, if the pool fell below ``min_instances``, requests
        one replacement. Calling it for an instance that is already gone
        does nothing.
        
        Args:
            instance: Instance to retire
            
        Returns:
            True if the instance was registered and has been retired
        """
        registry = self.context.registry
        
        # A stale handle for a re-seeded id must not retire its successor
        if registry.find_by_id(instance.id) is not instance:
            logger.debug(f"Instance {instance.id} already retired")
            return False

        registry.remove_by_id(instance.id)
        
        logger.warning(f"Marked {instance} dead")
        self.context.counters['retirements'] += 1
        self.context.request_deallocation(instance)
        
        if len(registry) < self.context.config.min_instances:
            logger.info(
                f"Pool below minimum ({len(registry)} < {self.context.config.min_instances}), "
                f"requesting replacement"
            )
            self.context.request_allocation()
        
        return True
