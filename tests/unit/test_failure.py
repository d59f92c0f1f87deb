"""Unit tests for failure detection and self-healing."""

import pytest
from unittest.mock import MagicMock

from imgcloud_manager.core.context import ManagerContext
from imgcloud_manager.core.failure import FailureDetector
from imgcloud_manager.core.exceptions import ProviderError


class TestFailureDetector:
    """Test cases for FailureDetector.mark_dead."""
    
    @pytest.fixture
    def detector(self, context):
        return FailureDetector(context)
    
    @pytest.mark.asyncio
    async def test_mark_dead_removes_and_deallocates(self, detector, context, mock_provider, make_instance):
        for instance_id in (1, 2, 3):
            context.registry.add(make_instance(instance_id))
        victim = context.registry.find_by_id(2)
        
        assert detector.mark_dead(victim) is True
        
        # Removal is synchronous, deallocation happens in the background
        assert context.registry.find_by_id(2) is None
        assert len(context.registry) == 2
        
        await context.drain()
        mock_provider.deallocate.assert_awaited_once_with(victim)
        mock_provider.allocate.assert_not_called()
        assert context.counters['retirements'] == 1
        assert context.counters['deallocations_confirmed'] == 1
    
    @pytest.mark.asyncio
    async def test_mark_dead_is_idempotent(self, detector, context, mock_provider, make_instance):
        for instance_id in (1, 2, 3):
            context.registry.add(make_instance(instance_id))
        victim = context.registry.find_by_id(1)
        
        assert detector.mark_dead(victim) is True
        assert detector.mark_dead(victim) is False
        
        await context.drain()
        assert mock_provider.deallocate.await_count == 1
        assert context.counters['retirements'] == 1
    
    @pytest.mark.asyncio
    async def test_replacement_at_minimum(self, detector, context, mock_provider, make_instance):
        """Dropping below min_instances requests exactly one replacement."""
        context.registry.add(make_instance(1))
        context.registry.add(make_instance(2))
        
        detector.mark_dead(context.registry.find_by_id(1))
        
        assert len(context.registry) == 1
        assert context.registry.next_available_id == 4
        
        await context.drain()
        
        mock_provider.allocate.assert_awaited_once_with(3, 8003)
        assert [i.id for i in context.registry.all()] == [2, 3]
        assert context.counters['allocations_requested'] == 1
        assert context.counters['allocations_confirmed'] == 1
    
    @pytest.mark.asyncio
    async def test_no_replacement_above_minimum(self, detector, context, mock_provider, make_instance):
        for instance_id in (1, 2, 3, 4):
            context.registry.add(make_instance(instance_id))
        
        detector.mark_dead(context.registry.find_by_id(4))
        await context.drain()
        
        mock_provider.allocate.assert_not_called()
        assert len(context.registry) == 3
    
    @pytest.mark.asyncio
    async def test_two_failures_at_minimum(self, detector, context, mock_provider, make_instance):
        context.registry.add(make_instance(1))
        context.registry.add(make_instance(2))
        
        detector.mark_dead(context.registry.find_by_id(1))
        detector.mark_dead(context.registry.find_by_id(2))
        await context.drain()
        
        assert mock_provider.allocate.await_count == 2
        assert sorted(i.id for i in context.registry.all()) == [3, 4]
    
    @pytest.mark.asyncio
    async def test_deallocation_failure_is_reported(self, config, mock_provider, stats_sink, make_instance):
        """A failed deallocation is counted and handed to the task hook."""
        hook = MagicMock()
        error = ProviderError("droplet delete failed", provider="mock", status_code=500)
        mock_provider.deallocate.side_effect = error
        context = ManagerContext(config, mock_provider, stats_sink, on_task_done=hook)
        detector = FailureDetector(context)
        for instance_id in (1, 2, 3):
            context.registry.add(make_instance(instance_id))
        
        detector.mark_dead(context.registry.find_by_id(3))
        await context.drain()
        
        assert context.counters['deallocations_failed'] == 1
        assert context.counters['deallocations_confirmed'] == 0
        hook.assert_called_once_with("deallocate instance 3", error)
        # The instance stays retired
        assert context.registry.find_by_id(3) is None
    
    @pytest.mark.asyncio
    async def test_allocation_failure_is_reported(self, config, mock_provider, stats_sink, make_instance):
        hook = MagicMock()
        mock_provider.allocate.side_effect = ProviderError("quota exceeded", provider="mock")
        context = ManagerContext(config, mock_provider, stats_sink, on_task_done=hook)
        detector = FailureDetector(context)
        context.registry.add(make_instance(1))
        context.registry.add(make_instance(2))
        
        detector.mark_dead(context.registry.find_by_id(1))
        await context.drain()
        
        assert context.counters['allocations_failed'] == 1
        assert len(context.registry) == 1
        descriptions = [call.args[0] for call in hook.call_args_list]
        assert "allocate instance 3" in descriptions
        assert context.pending_tasks == 0
    
    @pytest.mark.asyncio
    async def test_stale_handle_does_not_retire_successor(self, detector, context, mock_provider, make_instance):
        """An old object for a re-seeded id leaves the new instance alone."""
        stale = make_instance(1)
        context.registry.add(stale)
        context.registry.remove_by_id(1)
        current = make_instance(1)
        context.registry.add(current)
        
        assert detector.mark_dead(stale) is False
        await context.drain()
        
        assert context.registry.find_by_id(1) is current
        assert context.counters['retirements'] == 0
        mock_provider.deallocate.assert_not_called()
