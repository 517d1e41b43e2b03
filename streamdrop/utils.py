"""
Utilities

Address parsing and human-readable formatting shared by the transfer
layer and the CLI.
"""

from typing import Tuple, Union

Address = Union[str, Tuple[str, int]]


def parse_address(address: Address) -> Tuple[str, int]:
    """
    Parse ``"host:port"`` (or pass through ``(host, port)``).

    IPv6 hosts may be bracketed: ``"[::1]:8080"``.

    Raises:
        ValueError: if the address has no usable host or port
    """
    if isinstance(address, tuple):
        host, port = address
        return host, int(port)

    host, sep, port = address.strip().rpartition(':')
    if not sep or not host or not port.isdigit():
        raise ValueError(f"Invalid address {address!r} (use host:port)")

    port_num = int(port)
    if not 0 <= port_num <= 65535:
        raise ValueError(f"Port out of range in {address!r}")
    return host.strip('[]'), port_num


def format_address(host: str, port: int) -> str:
    if ':' in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def format_size(bytes_count: float) -> str:
    """Format bytes as human-readable size."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024
    return f"{bytes_count:.1f} PB"


def format_speed(bytes_per_sec: float) -> str:
    """Throughput in MB/s, the unit transfer summaries are reported in."""
    return f"{bytes_per_sec / 1024 / 1024:.2f} MB/s"
