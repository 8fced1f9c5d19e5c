"""MCP server entry point for the Seplos V3 BMS bus sniffer.

Exposes tools, resources, and prompts via the Model Context Protocol
using the official Python MCP SDK with stdio transport. The bus is only
listened to; no tool ever transmits on it.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any

from mcp.server.fastmcp import FastMCP

from .config import SnifferConfig
from .protocol.bitfields import describe_tables
from .protocol.parser import decode_captured
from .runtime import SnifferRuntime
from .store import StateStore

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "seplos-sniffer",
    instructions="Passive listener for Seplos V3 multi-pack BMS RS-485 buses",
)

# Global listener state
_runtime: SnifferRuntime | None = None
_store = StateStore()

PACK_SUMMARY_FIELDS = ("pack_voltage", "current", "soc", "soh", "system_status")
ALARM_FIELDS = (
    "active_alarms",
    "active_protections",
    "cell_voltage_alarms",
    "cell_temperature_alarms",
    "system_status",
    "FET_status",
)


def _valid_device_index(device_index: int) -> bool:
    return 0 <= device_index <= 15


def _pack_values(device_index: int, fields: tuple[str, ...] | None = None) -> dict[str, Any]:
    states = _store.device_states(device_index)
    if fields is not None:
        states = {name: states[name] for name in fields if name in states}
    return {name: entry.to_dict() for name, entry in states.items()}


# ─── CONNECTION TOOLS ─────────────────────────────────────────────────

@mcp.tool()
def connect(
    adapter: str | None = None,
    update_interval: float | None = None,
) -> dict[str, Any]:
    """Start listening to the BMS bus.

    Args:
        adapter: Serial device (/dev/ttyUSB0, COM3) or TCP relay
                 (tcp://host:port). Defaults to SEPLOS_ADAPTER or /dev/ttyS0.
        update_interval: Minimum seconds between stored updates of the
                         same value (default 5).
    """
    global _runtime
    if _runtime is not None and _runtime.running:
        return {
            "listening": True,
            "message": "Already listening",
            "adapter": _runtime.config.adapter,
        }

    try:
        config = SnifferConfig.from_env()
        if adapter is not None:
            config.adapter = adapter
        if update_interval is not None:
            config.update_interval = update_interval
        config.validate()
    except ValueError as e:
        return {"error": str(e)}

    _store.clear()
    _runtime = SnifferRuntime(config, _store)
    _runtime.start()
    logger.info("Listening on %s", config.adapter)
    return {"listening": True, **config.to_dict()}


@mcp.tool()
def disconnect() -> dict[str, bool]:
    """Stop listening and close the bus connection."""
    global _runtime
    if _runtime is None:
        return {"disconnected": True}
    _runtime.stop()
    _runtime = None
    return {"disconnected": True}


@mcp.tool()
def get_link_status() -> dict[str, Any]:
    """Report connection state, master link liveness, and framing counters."""
    if _runtime is None:
        return {"listening": False, "link_alive": False}

    seen_at = _store.link_seen_at
    return {
        "listening": _runtime.running,
        "connected": _runtime.connected,
        "adapter": _runtime.config.adapter,
        "link_alive": _store.link_alive,
        "seconds_since_master_frame": (
            round(time.time() - seen_at, 1) if seen_at is not None else None
        ),
        "last_error": _runtime.last_error,
        "framing": _runtime.listener.stats.to_dict(),
    }


# ─── PACK DATA TOOLS ──────────────────────────────────────────────────

@mcp.tool()
def list_packs() -> dict[str, Any]:
    """List the packs heard on the bus with a short summary of each."""
    packs = []
    for device_index in _store.devices():
        summary = {
            name: entry["value"]
            for name, entry in _pack_values(device_index, PACK_SUMMARY_FIELDS).items()
        }
        packs.append({"device_index": device_index, **summary})
    return {"packs": packs}


@mcp.tool()
def get_pack(device_index: int) -> dict[str, Any]:
    """Read every decoded value of one pack.

    Args:
        device_index: Pack index 0-15 (bus address minus one).
    """
    if not _valid_device_index(device_index):
        return {"error": "Device index must be 0-15"}
    values = _pack_values(device_index)
    if not values:
        return {"error": f"No data received from pack {device_index}"}
    return {"device_index": device_index, "values": values}


@mcp.tool()
def get_alarms(device_index: int | None = None) -> dict[str, Any]:
    """Read alarm, protection and status text for one pack or all packs.

    Args:
        device_index: Pack index 0-15, or omit for every pack.
    """
    if device_index is not None and not _valid_device_index(device_index):
        return {"error": "Device index must be 0-15"}
    indices = [device_index] if device_index is not None else _store.devices()
    packs = []
    for index in indices:
        values = {
            name: entry["value"]
            for name, entry in _pack_values(index, ALARM_FIELDS).items()
        }
        if values:
            packs.append({"device_index": index, **values})
    return {"packs": packs}


@mcp.tool()
def decode_frame(hex_data: str) -> dict[str, Any]:
    """Decode one captured frame given as hex (spaces allowed).

    The header and CRC are checked; nothing is stored.

    Args:
        hex_data: Frame bytes, e.g. "01 04 24 ... crc_lo crc_hi".
    """
    try:
        data = bytes.fromhex(hex_data)
    except ValueError as e:
        return {"error": f"Invalid hex: {e}"}
    try:
        record = decode_captured(data)
    except ValueError as e:
        return {"error": str(e)}
    return {
        "device_index": record.device_index,
        "frame_type": record.frame_type.name,
        "metrics": [m.to_dict() for m in record.metrics()],
    }


# ─── MCP RESOURCES ───────────────────────────────────────────────────

@mcp.resource("seplos://bus/status")
def resource_bus_status() -> str:
    """Connection state and master link liveness."""
    return json.dumps(get_link_status())


@mcp.resource("seplos://packs/list")
def resource_packs_list() -> str:
    """Summary of every pack heard on the bus."""
    return json.dumps(list_packs())


@mcp.resource("seplos://protocol/bitfields")
def resource_bitfields() -> str:
    """Alarm/status bit assignments of the 0x12 frame."""
    return json.dumps({"status_bytes": describe_tables()})


# ─── MCP PROMPTS ─────────────────────────────────────────────────────

@mcp.prompt()
def diagnose_pack(device_index: int) -> str:
    """Guide the AI through a health check of one battery pack.

    Args:
        device_index: Pack index 0-15.
    """
    return f"""Check the health of battery pack {device_index}.
Use get_pack to read its values and get_alarms for active conditions.
Consider:
- Spread between max_cell_voltage and min_cell_voltage
- Cells that are balancing or flagged in cell_voltage_alarms
- Temperatures against charge/discharge limits
- SOH and cycle_count
- Any active protections and FET status

If get_link_status shows the link is down, report that first."""


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the MCP server with stdio transport."""
    logging.basicConfig(level=logging.INFO)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
