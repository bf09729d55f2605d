"""
Typed queue processors, one per queue type.
"""
from typing import Dict, Type

from src.models.work_item import QueueType
from src.processors.appointments import AppointmentsProcessor
from src.processors.base import BaseProcessor, ProcessorRunStats, ProcessorState
from src.processors.contacts import ContactsProcessor
from src.processors.context import ProcessorContext
from src.processors.critical import CriticalProcessor
from src.processors.financial import FinancialProcessor
from src.processors.general import GeneralProcessor
from src.processors.messages import MessagesProcessor
from src.processors.projects import ProjectsProcessor

PROCESSORS: Dict[QueueType, Type[BaseProcessor]] = {
    QueueType.CRITICAL: CriticalProcessor,
    QueueType.MESSAGES: MessagesProcessor,
    QueueType.CONTACTS: ContactsProcessor,
    QueueType.APPOINTMENTS: AppointmentsProcessor,
    QueueType.FINANCIAL: FinancialProcessor,
    QueueType.PROJECTS: ProjectsProcessor,
    QueueType.GENERAL: GeneralProcessor,
}


def build_processor(queue_type: QueueType, ctx: ProcessorContext, **kwargs) -> BaseProcessor:
    """Instantiate the processor registered for `queue_type`."""
    return PROCESSORS[QueueType(queue_type)](ctx, **kwargs)


__all__ = [
    "PROCESSORS",
    "build_processor",
    "BaseProcessor",
    "ProcessorContext",
    "ProcessorRunStats",
    "ProcessorState",
    "AppointmentsProcessor",
    "ContactsProcessor",
    "CriticalProcessor",
    "FinancialProcessor",
    "GeneralProcessor",
    "MessagesProcessor",
    "ProjectsProcessor",
]
