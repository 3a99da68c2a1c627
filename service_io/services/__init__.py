from .alarm import Alarm
from .echo import Echo
from .process import Process
from .public_ip import PublicIp

__all__ = ['Alarm', 'Echo', 'Process', 'PublicIp']
