from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
import json

from edi_services.mapper.rules import MappingProfile, MappingRule

# Segment that opens each line-item loop, per transaction set
LOOP_BOUNDARIES: Dict[str, str] = {
    "850": "PO1",  # purchase order
    "855": "PO1",  # PO acknowledgment
    "860": "POC",  # PO change
    "810": "IT1",  # invoice
    "846": "LIN",  # inventory advice
    "852": "LIN",  # product activity
}

# Summary/closing segments; everything from the first of these on is outside both scopes
TRAILER_SEGMENTS = frozenset({"CTT", "SE", "GE", "IEA"})


@dataclass(frozen=True)
class Segment:
    segment_id: str
    elements: Tuple[str, ...]

    @staticmethod
    def parse(raw: str, delimiter: str) -> "Segment":
        parts = raw.split(delimiter)
        return Segment(segment_id=parts[0].strip().upper(), elements=tuple(parts[1:]))

    def element(self, position: int) -> str:
        """Element at 1-based ``position``; empty string when out of range."""
        if position < 1 or position > len(self.elements):
            return ""
        return self.elements[position - 1]


@dataclass(frozen=True)
class MissingRequiredField:
    target_field: str
    segment_id: Optional[str] = None
    element_position: Optional[int] = None
    line: Optional[int] = None  # loop iteration (1-based); None for header fields

    def __str__(self) -> str:
        return f"MissingRequiredField({self.target_field})"

    def describe(self) -> str:
        msg = str(self)
        if self.segment_id and self.element_position:
            msg += f": {self.segment_id}{self.element_position:02d} missing or empty"
        if self.line is not None:
            msg += f" on line {self.line}"
        return msg


@dataclass(frozen=True)
class NormalizedLine:
    sequence: int
    fields: Dict[str, str]

    def to_dict(self) -> Dict[str, object]:
        return {"lineSequenceNumber": self.sequence, **self.fields}


@dataclass(frozen=True)
class NormalizedDocument:
    retailer_id: str
    transaction_set_code: str
    header: Dict[str, str] = field(default_factory=dict)
    lines: Tuple[NormalizedLine, ...] = ()

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.header.get(name, default)

    def to_dict(self) -> Dict[str, object]:
        return {
            "retailerId": self.retailer_id,
            "transactionSetCode": self.transaction_set_code,
            "header": dict(self.header),
            "lines": [ln.to_dict() for ln in self.lines],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)


ValidationErrors = List[MissingRequiredField]


def loop_marker(profile: MappingProfile) -> Optional[str]:
    return profile.loop_segment_id or LOOP_BOUNDARIES.get(profile.transaction_set_code)


def split_regions(segments: Sequence[Segment], marker: Optional[str]) -> Tuple[List[Segment], List[List[Segment]]]:
    """Split into (header segments, one segment list per loop iteration)."""
    header: List[Segment] = []
    loops: List[List[Segment]] = []
    for seg in segments:
        if seg.segment_id in TRAILER_SEGMENTS:
            break
        if marker and seg.segment_id == marker:
            loops.append([seg])
        elif loops:
            loops[-1].append(seg)
        else:
            header.append(seg)
    return header, loops


def _matches(rule: MappingRule, seg: Segment) -> bool:
    if seg.segment_id != rule.segment_id:
        return False
    q = rule.qualifier_match
    if q is None:
        return True
    pos, expected = q
    return seg.element(pos).strip().upper() == expected.upper()


def _apply_rules(rules: Iterable[MappingRule], scope: Sequence[Segment],
                 line: Optional[int], errors: ValidationErrors) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for rule in rules:
        # First match in document order wins; later duplicates are ignored
        seg = next((s for s in scope if _matches(rule, s)), None)
        value = seg.element(rule.element_position) if seg is not None else ""
        if value.strip():
            out[rule.target_field] = value
        elif rule.default_value is not None:
            out[rule.target_field] = rule.default_value
        elif rule.required:
            errors.append(MissingRequiredField(rule.target_field, rule.segment_id, rule.element_position, line))
    return out


def apply(profile: MappingProfile, segment_stream: Iterable[str],
          element_delimiter: Optional[str] = None) -> Tuple[NormalizedDocument, ValidationErrors]:
    """Apply ``profile`` to raw segments (already split on the segment terminator).

    ``element_delimiter`` overrides the profile's when the envelope declares its own.
    Values are passed through as raw strings; type coercion belongs to the caller.
    """
    delim = element_delimiter or profile.element_delimiter
    segments = [Segment.parse(raw, delim) for raw in segment_stream if raw and raw.strip()]
    header_segs, loops = split_regions(segments, loop_marker(profile))

    errors: ValidationErrors = []
    header = _apply_rules(profile.header_mappings, header_segs, None, errors)
    lines = tuple(
        NormalizedLine(sequence=i, fields=_apply_rules(profile.line_mappings, loop, i, errors))
        for i, loop in enumerate(loops, start=1)
    )
    doc = NormalizedDocument(
        retailer_id=profile.retailer_id,
        transaction_set_code=profile.transaction_set_code,
        header=header,
        lines=lines,
    )
    return doc, errors
