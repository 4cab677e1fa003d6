"""plugscan: crash-isolated discovery of audio plugins.

Plugin binaries are probed in a supervised worker process so that a
misbehaving plugin can only take down the worker, never the host.
"""

__version__ = "0.1.0"
