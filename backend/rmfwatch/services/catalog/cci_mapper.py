"""
CCI to NIST 800-53 control mapping.

A CciMapper is an immutable lookup built once per import, either from the
catalog tables or from a DISA ``U_CCI_List.xml``:

    cci_list > cci_items > cci_item@id
        definition
        references > reference@title@index

Control ids are reduced to the control or enhancement a finding rolls up to:
``"AC-2 a 1"`` maps to ``AC-2`` and ``"AC-2 (1)"`` to ``AC-2(1)``.
"""

import logging
import re
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Tuple

from lxml import etree
from sqlalchemy.orm import Session

from ...database import NistControlCci
from .exceptions import CatalogError

logger = logging.getLogger(__name__)

_CONTROL_PATTERN = re.compile(r"^([A-Z]{2}-\d+)(?:\s*\(\s*(\d+)\s*\))?")


def normalize_control_id(control_id: str) -> str:
    """
    Canonical spelling of a control id: upper case, no spaces around parentheses.

    Example:
        >>> normalize_control_id(" ac-2 ( 1 ) ")
        'AC-2(1)'
    """
    value = re.sub(r"\s*\(\s*", "(", control_id.strip().upper())
    return re.sub(r"\s*\)\s*", ")", value).strip()


def base_control_id(reference_index: str) -> Optional[str]:
    """
    Control or enhancement id from a NIST reference index.

    Returns None when the index does not start with a control id.

    Example:
        >>> base_control_id("AC-2 a 1")
        'AC-2'
        >>> base_control_id("SC-7 (5)")
        'SC-7(5)'
    """
    match = _CONTROL_PATTERN.match(reference_index.strip().upper())
    if not match:
        return None
    control, enhancement = match.groups()
    return f"{control}({enhancement})" if enhancement else control


class CciMapper:
    """
    Read-only CCI -> control id lookup.

    Example:
        >>> mapper = CciMapper.from_session(db)
        >>> mapper.map_cci("CCI-000015")
        'AC-2'
    """

    def __init__(self, mappings: Mapping[str, str]) -> None:
        self._mappings = MappingProxyType(dict(mappings))

    def __len__(self) -> int:
        return len(self._mappings)

    @property
    def mappings(self) -> Mapping[str, str]:
        return self._mappings

    def map_cci(self, cci: Optional[str]) -> Optional[str]:
        if not cci:
            return None
        return self._mappings.get(cci.strip().upper())

    def map_first(self, ccis: Iterable[str]) -> Optional[str]:
        """Control of the first CCI that maps, in the given order."""
        return next((c for c in (self.map_cci(cci) for cci in ccis) if c), None)

    @classmethod
    def empty(cls) -> "CciMapper":
        return cls({})

    @classmethod
    def from_session(cls, db: Session) -> "CciMapper":
        """Build the lookup from the catalog's control/CCI table."""
        rows = db.query(NistControlCci.cci, NistControlCci.control_id).order_by(NistControlCci.id).all()
        mappings: Dict[str, str] = {}
        for cci, control_id in rows:
            mappings.setdefault(cci.strip().upper(), normalize_control_id(control_id))
        logger.info("CCI mapper loaded %d mappings from catalog", len(mappings))
        return cls(mappings)

    @classmethod
    def from_cci_list(cls, content: bytes) -> "CciMapper":
        """
        Build the lookup from a DISA CCI list export.

        The first reference whose title mentions NIST decides the control.

        Raises:
            CatalogError: If the content is not a CCI list.
        """
        entries = parse_cci_list(content)
        return cls({cci: control for cci, _, control in entries if control})


def parse_cci_list(content: bytes) -> Tuple[Tuple[str, str, Optional[str]], ...]:
    """
    Parse a CCI list into (cci, definition, control id) triples.

    Raises:
        CatalogError: If the XML is malformed or the root is not cci_list.
    """
    parser = etree.XMLParser(resolve_entities=False, no_network=True, remove_comments=True, remove_pis=True)
    try:
        root = etree.fromstring(content, parser)  # nosec B320
    except etree.XMLSyntaxError as e:
        raise CatalogError("CCI list is not well-formed XML", {"xml": str(e)}) from e

    if etree.QName(root).localname != "cci_list":
        raise CatalogError("Invalid CCI list structure", {"root": etree.QName(root).localname})

    entries = []
    for item in root.iter("{*}cci_item"):
        cci = (item.get("id") or "").strip().upper()
        if not cci:
            continue
        definition = next((d.text or "" for d in item.iter("{*}definition")), "").strip()
        control = None
        for reference in item.iter("{*}reference"):
            if "NIST" in (reference.get("title") or "") and reference.get("index"):
                control = base_control_id(reference.get("index"))
                break
        entries.append((cci, definition, control))

    logger.info("Parsed %d CCI items, %d mapped to NIST controls", len(entries), sum(1 for e in entries if e[2]))
    return tuple(entries)
