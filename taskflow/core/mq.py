import asyncio
import logging
import time
import uuid
from enum import Enum
from typing import Any, Dict, List

import redis.asyncio as redis
from pydantic import BaseModel, Field

from taskflow.core.config import settings

logger = logging.getLogger("taskflow.mq")

# ==========================================
# Schema Definitions
# ==========================================


class ChannelType(str, Enum):
    TELEGRAM = "telegram"
    NTFY = "ntfy"
    INAPP = "inapp"  # Chat surface inside the app


class MessageType(str, Enum):
    TEXT = "text"
    SYSTEM = "system"  # Internal notifications
    WORKFLOW = "workflow_notification"


class UnifiedMessage(BaseModel):
    """
    Standardized Message Envelope for all communication channels.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    channel: ChannelType
    channel_id: str  # Chat ID, topic, or 'chat' for the in-app transcript
    content: str
    msg_type: MessageType = MessageType.TEXT
    meta: Dict[str, Any] = Field(default_factory=dict)
    created_at: float = Field(default_factory=time.time)


# ==========================================
# Message Queue Service
# ==========================================


class MQService:
    """
    Redis-backed message lists.
    - In-app: workflow prompts waiting for the chat surface (newest first, capped)
    """

    _redis_instances: Dict[int, redis.Redis] = {}

    INAPP_KEY = "mq:inapp"
    INAPP_MAX_LENGTH = 500

    @classmethod
    async def get_redis(cls) -> redis.Redis:
        try:
            loop = asyncio.get_running_loop()
            loop_id = id(loop)
        except RuntimeError:
            loop_id = 0

        if loop_id not in cls._redis_instances:
            # One client per event loop
            client = redis.from_url(settings.REDIS_URL, decode_responses=True)
            cls._redis_instances[loop_id] = client
            logger.debug(f"Created new Redis client for loop {loop_id}")

        return cls._redis_instances[loop_id]

    @classmethod
    async def close(cls):
        for loop_id, client in list(cls._redis_instances.items()):
            try:
                await client.aclose()
            except Exception as e:
                logger.debug(f"Error closing Redis client for loop {loop_id}: {e}")
            del cls._redis_instances[loop_id]

    @classmethod
    async def push_inapp(cls, message: UnifiedMessage):
        """Push a message for the in-app chat surface."""
        r = await cls.get_redis()
        try:
            await r.lpush(cls.INAPP_KEY, message.model_dump_json())
            await r.ltrim(cls.INAPP_KEY, 0, cls.INAPP_MAX_LENGTH - 1)
            logger.debug(f"MQ INAPP Push: {message.id}")
        except Exception as e:
            logger.error(f"Failed to push to INAPP: {e}")
            raise

    @classmethod
    async def recent_inapp(cls, limit: int = 20) -> List[UnifiedMessage]:
        """Most recent in-app messages, newest first."""
        r = await cls.get_redis()
        rows = await r.lrange(cls.INAPP_KEY, 0, max(limit, 1) - 1)
        messages = []
        for data in rows:
            try:
                messages.append(UnifiedMessage.model_validate_json(data))
            except ValueError as e:
                logger.warning(f"Skipping malformed in-app message: {e}")
        return messages
