from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional

from edi_services.errors import MalformedSegment

"""
X12 envelope tokenizer: turns raw interchange text into ISA > GS > ST structure
and hands each transaction's body segments to the mapping engine as raw strings.
Delimiters come from the fixed-width ISA header.
"""

ISA_LENGTH = 106
ISA_MIN_ELEMENTS = 16
GS_MIN_ELEMENTS = 8
ST_MIN_ELEMENTS = 2


@dataclass(frozen=True)
class Delimiters:
    element: str = "*"
    component: str = ">"
    segment: str = "~"


@dataclass
class Transaction:
    code: str  # ST01, e.g. "850"
    control_number: str  # ST02
    segments: List[str] = field(default_factory=list)  # raw body segments between ST and SE
    first_line: int = 0


@dataclass
class FunctionalGroup:
    functional_id: str  # GS01, e.g. "PO"
    sender_code: str
    receiver_code: str
    control_number: str
    transactions: List[Transaction] = field(default_factory=list)


@dataclass
class Interchange:
    sender_id: str
    receiver_id: str
    control_number: str
    delimiters: Delimiters
    groups: List[FunctionalGroup] = field(default_factory=list)

    @property
    def transactions(self) -> List[Transaction]:
        return [t for g in self.groups for t in g.transactions]

    def first_transaction(self) -> Transaction:
        txs = self.transactions
        if not txs:
            raise MalformedSegment("No ST transaction found in interchange", "ST", 0)
        return txs[0]


def detect_delimiters(content: str) -> Delimiters:
    if len(content) < ISA_LENGTH:
        raise MalformedSegment(f"Content too short to contain a valid ISA segment (min {ISA_LENGTH} chars)", "ISA", 1)
    if not content.startswith("ISA"):
        raise MalformedSegment("EDI content must start with an ISA segment", "ISA", 1)
    return Delimiters(element=content[3], component=content[104], segment=content[105])


def split_segments(content: str, terminator: str) -> List[str]:
    return [s.strip() for s in content.split(terminator) if s.strip()]


def _elements(raw: str, delim: str) -> List[str]:
    return raw.split(delim)[1:]


def _require(count: int, elements: List[str], seg_id: str, line: int) -> None:
    if len(elements) < count:
        raise MalformedSegment(f"Expected at least {count} elements but found {len(elements)}", seg_id, line)


def parse_interchange(raw_content: Optional[str]) -> Interchange:
    """Parse raw X12 text. Raises MalformedSegment on any envelope violation."""
    if raw_content is None or not raw_content.strip():
        raise MalformedSegment("EDI content is empty", "ISA", 0)
    content = raw_content.replace("\r\n", "\n").replace("\r", "\n").lstrip()
    delims = detect_delimiters(content)

    interchange: Optional[Interchange] = None
    group: Optional[FunctionalGroup] = None
    tx: Optional[Transaction] = None

    for line, raw in enumerate(split_segments(content, delims.segment), start=1):
        seg_id = raw.split(delims.element, 1)[0].strip().upper()
        els = _elements(raw, delims.element)
        if seg_id == "ISA":
            _require(ISA_MIN_ELEMENTS, els, seg_id, line)
            interchange = Interchange(
                sender_id=els[5].strip(),
                receiver_id=els[7].strip(),
                control_number=els[12].strip(),
                delimiters=delims,
            )
        elif seg_id == "GS":
            if interchange is None:
                raise MalformedSegment("Encountered segment outside of ISA envelope", seg_id, line)
            _require(GS_MIN_ELEMENTS, els, seg_id, line)
            group = FunctionalGroup(functional_id=els[0], sender_code=els[1], receiver_code=els[2],
                                    control_number=els[5])
        elif seg_id == "ST":
            if group is None:
                raise MalformedSegment("Encountered segment outside of GS envelope", seg_id, line)
            _require(ST_MIN_ELEMENTS, els, seg_id, line)
            tx = Transaction(code=els[0].strip(), control_number=els[1].strip(), first_line=line)
        elif seg_id == "SE":
            if tx is None:
                raise MalformedSegment("Encountered SE without a matching ST segment", seg_id, line)
            if group is None:
                raise MalformedSegment("Encountered segment outside of GS envelope", seg_id, line)
            group.transactions.append(tx)
            tx = None
        elif seg_id == "GE":
            if group is None:
                raise MalformedSegment("Encountered segment outside of GS envelope", seg_id, line)
            if interchange is None:
                raise MalformedSegment("Encountered segment outside of ISA envelope", seg_id, line)
            interchange.groups.append(group)
            group = None
        elif seg_id == "IEA":
            if interchange is None:
                raise MalformedSegment("Encountered segment outside of ISA envelope", seg_id, line)
        elif tx is not None:
            tx.segments.append(raw)

    if interchange is None:
        raise MalformedSegment("No ISA segment found in EDI content", "ISA", 0)
    if tx is not None:
        raise MalformedSegment(f"Transaction {tx.control_number} is missing its SE trailer", "ST", tx.first_line)
    return interchange
