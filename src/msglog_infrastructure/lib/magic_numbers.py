"""
Module of meaningful integer values.

This module consists of constants that are used to provide meaningful representations of
integer values used in infrastructure management.
"""

ALL_PORTS_FROM = 0
ALL_PORTS_TO = 0
DEFAULT_HTTP_PORT = 80
MAXIMUM_PORT_NUMBER = 65535

HALF_GIGABYTE_MB = 512
QUARTER_VCPU = 256

DEFAULT_LOG_RETENTION_DAYS = 14
SINGLE_TASK = 1
