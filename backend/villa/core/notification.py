"""
通知渠道：住宿取消等事件的对外通知出口
"""
from abc import ABC, abstractmethod
from typing import Dict, Optional


class INotificationChannel(ABC):

    @abstractmethod
    def send(self, recipient: str, subject: str, content: str,
             html: Optional[str] = None) -> bool:
        """发送一条通知，返回是否成功；实现方不得向调用方抛出投递异常"""

    @abstractmethod
    def get_channel_type(self) -> str:
        ...


class NotificationChannelRegistry:
    """按渠道类型登记的进程级注册表，应用启动时登记邮件渠道"""

    _instance: Optional["NotificationChannelRegistry"] = None
    _channels: Dict[str, INotificationChannel]

    def __new__(cls) -> "NotificationChannelRegistry":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._channels = {}
        return cls._instance

    def register(self, channel: INotificationChannel) -> None:
        self._channels[channel.get_channel_type()] = channel

    def send(self, channel_type: str, recipient: str, subject: str, content: str,
             html: Optional[str] = None) -> bool:
        """渠道未登记时视为未发送"""
        channel = self._channels.get(channel_type)
        if channel is None:
            return False
        return channel.send(recipient, subject, content, html)

    def clear(self) -> None:
        self._channels.clear()
