"""
Work messages and the dispatcher that puts them on Celery queues.
"""

import logging
from typing import List, Optional, Protocol, Union

from pydantic import BaseModel, Field

from ..core.types import STAGE_CACHE, STAGE_THUMBNAIL
from .config import TASK_CACHE_ITEM, TASK_COLLECTION_SCAN, TASK_THUMBNAIL_ITEM

logger = logging.getLogger(__name__)


class ScanRequestMessage(BaseModel):
    """Ask a scan worker to index a collection's images."""

    collection_id: str
    job_id: str
    force_rescan: bool = False


class ItemWorkMessage(BaseModel):
    """One derived-artifact item (thumbnail or cache image) for one image."""

    job_id: str
    stage: str
    collection_id: str
    image_id: str
    filename: Optional[str] = None
    width: int = Field(gt=0)
    height: int = Field(gt=0)
    quality: int = Field(default=85, ge=1, le=100)
    format: str = "jpeg"


Message = Union[ScanRequestMessage, ItemWorkMessage]


class Dispatcher(Protocol):
    """Anything that can publish work messages."""

    def publish(self, message: Message) -> None:
        ...


class CeleryDispatcher:
    """Publishes messages as Celery tasks (message fields become kwargs)."""

    STAGE_TASKS = {
        STAGE_THUMBNAIL: TASK_THUMBNAIL_ITEM,
        STAGE_CACHE: TASK_CACHE_ITEM,
    }

    def __init__(self, app=None):
        if app is None:
            from .celery_app import app as celery_app

            app = celery_app
        self.app = app

    def task_name(self, message: Message) -> str:
        if isinstance(message, ScanRequestMessage):
            return TASK_COLLECTION_SCAN
        try:
            return self.STAGE_TASKS[message.stage]
        except KeyError:
            raise ValueError(f"No task for stage '{message.stage}'") from None

    def publish(self, message: Message) -> None:
        name = self.task_name(message)
        self.app.send_task(name, kwargs=message.model_dump(mode="json"))
        logger.debug(f"Dispatched {name} for job {message.job_id}")


class RecordingDispatcher:
    """Keeps messages in memory (dry runs and tests)."""

    def __init__(self) -> None:
        self.messages: List[Message] = []

    def publish(self, message: Message) -> None:
        self.messages.append(message)

    @property
    def scan_requests(self) -> List[ScanRequestMessage]:
        return [m for m in self.messages if isinstance(m, ScanRequestMessage)]

    @property
    def item_messages(self) -> List[ItemWorkMessage]:
        return [m for m in self.messages if isinstance(m, ItemWorkMessage)]
