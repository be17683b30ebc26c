"""
Node firewall integration

Excluder implementations that let excluded networks bypass enforcement.
"""

from .excluder import Excluder
from .iptables import IPTablesExcluder

__all__ = ["Excluder", "IPTablesExcluder"]
