# ============================================================================
# Scheduled Reports - Channel Registry
# ============================================================================

import logging
from typing import Dict, List

from ..errors import InvalidReportDefinition
from .base import Channel

logger = logging.getLogger("reporting.delivery.registry")


class ChannelRegistry:
    """Maps a report ``channel_type`` to the Channel that handles it."""

    def __init__(self):
        self._channels: Dict[str, Channel] = {}

    def register(self, channel: Channel):
        if channel.channel_type in self._channels:
            logger.warning(f"Channel '{channel.channel_type}' registered twice, replacing")
        self._channels[channel.channel_type] = channel
        logger.debug(f"Registered channel '{channel.channel_type}'")

    def get(self, channel_type: str) -> Channel:
        channel = self._channels.get(channel_type)
        if channel is None:
            raise InvalidReportDefinition(
                f"Report type '{channel_type}' is not supported. "
                f"Supported values: {', '.join(self.types()) or 'none'}"
            )
        return channel

    def types(self) -> List[str]:
        return list(self._channels.keys())

    def __contains__(self, channel_type) -> bool:
        return channel_type in self._channels

    def describe(self) -> List[Dict]:
        return [channel.describe() for channel in self._channels.values()]
