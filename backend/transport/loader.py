"""
Transport factory resolution.

The concrete transport is selected by configuration as an import path
of the form "package.module:attribute", where attribute is a
zero-argument callable (usually the transport class itself).
"""

from __future__ import annotations

import importlib

from transport.base import MessagingTransport


def load_transport(path: str) -> MessagingTransport:
    """
    Import and instantiate the transport named by path.

    Raises:
        ValueError if path is malformed.
        ImportError / AttributeError if the target cannot be resolved.
        TypeError if the built object does not satisfy MessagingTransport.
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(
            f"TRANSPORT must look like 'package.module:attribute', got {path!r}"
        )

    module = importlib.import_module(module_name)
    factory = getattr(module, attr)
    transport = factory()

    if not isinstance(transport, MessagingTransport):
        raise TypeError(
            f"{path} built {type(transport).__name__}, which does not "
            "implement MessagingTransport"
        )
    return transport
