"""Crash-isolated plugin scanning.

The host uses ``PluginScanner`` (or ``plugscan.manager.PluginManager``);
``ScannerMaster`` supervises one worker process running ``ScannerWorker``.
"""

from plugscan.scanner.events import (
    PluginListChanged,
    ProbeStarted,
    ProgressUpdated,
    ScanEvent,
    ScanFailed,
    ScanFinished,
)
from plugscan.scanner.facade import PluginScanner
from plugscan.scanner.master import ScannerMaster, ScanSession, ScanState

__all__ = [
    "PluginListChanged",
    "PluginScanner",
    "ProbeStarted",
    "ProgressUpdated",
    "ScanEvent",
    "ScanFailed",
    "ScanFinished",
    "ScanSession",
    "ScanState",
    "ScannerMaster",
]
