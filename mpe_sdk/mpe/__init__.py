"""
Escrow contract, payment channels and channel selection.
"""
from .channel import PaymentChannel
from .contract import MPEContract
from .repository import ChannelRepository
from .selector import ChannelSelector

__all__ = ['MPEContract', 'PaymentChannel', 'ChannelRepository', 'ChannelSelector']
