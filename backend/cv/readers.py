"""
Symbology readers.

Built-in reader names map onto ZBar symbol types and are decoded with pyzbar.
Plugins register a ``BarcodeReader`` subclass under a new name; subclasses
must be importable at module level so worker processes can unpickle them.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Type

import numpy as np
from pyzbar.pyzbar import ZBarSymbol, decode

logger = logging.getLogger(__name__)

BUILTIN_READERS: Dict[str, ZBarSymbol] = {
    "code_128_reader": ZBarSymbol.CODE128,
    "ean_reader": ZBarSymbol.EAN13,
    "ean_8_reader": ZBarSymbol.EAN8,
    "code_39_reader": ZBarSymbol.CODE39,
    "code_39_vin_reader": ZBarSymbol.CODE39,
    "codabar_reader": ZBarSymbol.CODABAR,
    "upc_reader": ZBarSymbol.UPCA,
    "upc_e_reader": ZBarSymbol.UPCE,
    "i2of5_reader": ZBarSymbol.I25,
    "code_93_reader": ZBarSymbol.CODE93,
    "qr_reader": ZBarSymbol.QRCODE,
}

# ZBar type name -> reader format reported in code results
_FORMATS = {
    "CODE128": "code_128",
    "EAN13": "ean_13",
    "EAN8": "ean_8",
    "CODE39": "code_39",
    "CODABAR": "codabar",
    "UPCA": "upc_a",
    "UPCE": "upc_e",
    "I25": "i2of5",
    "CODE93": "code_93",
    "QRCODE": "qr_code",
}


@dataclass
class ReaderHit:
    code: str
    format: str
    polygon: np.ndarray  # (N, 2) points in the pixel space of the decoded image


class BarcodeReader:
    """Base class for symbology readers."""

    FORMAT = "unknown"

    def __init__(self, config: dict | None = None):
        self.config = config or {}

    def decode(self, image: np.ndarray) -> List[ReaderHit]:
        raise NotImplementedError


class ZBarReader(BarcodeReader):
    """Decodes any number of ZBar symbologies in one pass."""

    FORMAT = "zbar"

    def __init__(self, symbols: Iterable[ZBarSymbol], config: dict | None = None):
        super().__init__(config)
        self.symbols = list(dict.fromkeys(symbols))

    def decode(self, image: np.ndarray) -> List[ReaderHit]:
        if not self.symbols or image.size == 0:
            return []
        hits = []
        for obj in decode(image, symbols=self.symbols):
            if obj.polygon:
                polygon = np.array([(p.x, p.y) for p in obj.polygon], dtype=np.float64)
            else:
                left, top, width, height = obj.rect
                polygon = np.array(
                    [[left, top], [left, top + height], [left + width, top + height], [left + width, top]],
                    dtype=np.float64,
                )
            hits.append(
                ReaderHit(
                    code=obj.data.decode("utf-8", errors="replace"),
                    format=_FORMATS.get(obj.type, obj.type.lower()),
                    polygon=polygon,
                )
            )
        return hits


_registry: Dict[str, Type[BarcodeReader]] = {}


def register_reader(name: str, reader: Type[BarcodeReader]) -> None:
    """Make a reader class available to every decoder created afterwards."""
    if not (isinstance(reader, type) and issubclass(reader, BarcodeReader)):
        raise TypeError(f"Reader '{name}' must be a BarcodeReader subclass")
    _registry[name] = reader
    logger.info("Registered reader '%s' (%s)", name, reader.__name__)


def registered_readers() -> Dict[str, Type[BarcodeReader]]:
    return dict(_registry)


def build_readers(names: Iterable[str], extra: Dict[str, Type[BarcodeReader]] | None = None) -> List[BarcodeReader]:
    """Instantiate readers for ``names``; built-in symbologies share one ZBar reader."""
    custom = {**_registry, **(extra or {})}
    symbols: list[ZBarSymbol] = []
    readers: List[BarcodeReader] = []
    for name in names:
        if name in custom:
            readers.append(custom[name]())
        elif name in BUILTIN_READERS:
            symbols.append(BUILTIN_READERS[name])
        else:
            logger.warning("Unknown reader '%s' ignored", name)
    if symbols:
        readers.insert(0, ZBarReader(symbols))
    return readers
