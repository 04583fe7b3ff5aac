from typing import Dict, Any, List, Callable
import inspect
import structlog

logger = structlog.get_logger(__name__)

PROCESSING_STARTED = "processing_started"
ENTRY_ACTIVATED = "entry_activated"
PROCESSING_FINISHED = "processing_finished"


class WorldInfoEvents:
    """Caller-owned hub for activation lifecycle hooks"""

    def __init__(self):
        self.event_handlers: Dict[str, List[Callable]] = {}

    def register_event_handler(self, event_type: str, handler: Callable):
        """Register a handler called as handler(generation_id, data)"""

        if event_type not in self.event_handlers:
            self.event_handlers[event_type] = []
        self.event_handlers[event_type].append(handler)

    async def emit(self, generation_id: str, event_type: str, data: Any):
        """Emit an event to registered handlers, in registration order"""

        for handler in self.event_handlers.get(event_type, []):
            try:
                outcome = handler(generation_id, data)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.error("Error in event handler",
                             event_type=event_type,
                             generation_id=generation_id,
                             error=str(e))
