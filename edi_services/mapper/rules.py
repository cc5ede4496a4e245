from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from edi_services.errors import InvalidProfile

DEFAULT_QUALIFIER_POSITION = 1


@dataclass(frozen=True)
class MappingRule:
    segment_id: str
    element_position: int  # 1-based, BEG03 -> 3
    target_field: str
    required: bool = False
    default_value: Optional[str] = None
    qualifier: Optional[str] = None  # "01:ST" or "ST"
    line_level: bool = False

    @property
    def qualifier_match(self) -> Optional[Tuple[int, str]]:
        """(element position, expected value) parsed from ``qualifier``."""
        if not self.qualifier or not self.qualifier.strip():
            return None
        q = self.qualifier.strip()
        pos, sep, value = q.partition(":")
        if sep and pos.strip().isdigit():
            return int(pos), value.strip()
        return DEFAULT_QUALIFIER_POSITION, q

    @staticmethod
    def from_dict(data: Dict[str, Any], line_level: bool = False) -> "MappingRule":
        return MappingRule(
            segment_id=str(data.get("segmentId") or "").strip().upper(),
            element_position=int(data.get("elementPosition", 0)),
            target_field=str(data.get("targetField") or "").strip(),
            required=bool(data.get("required", False)),
            default_value=data.get("defaultValue"),
            qualifier=data.get("qualifier") or None,
            line_level=bool(data.get("lineLevel", line_level)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "segmentId": self.segment_id,
            "elementPosition": self.element_position,
            "targetField": self.target_field,
            "required": self.required,
            "defaultValue": self.default_value,
            "qualifier": self.qualifier,
            "lineLevel": self.line_level,
        }


@dataclass(frozen=True)
class MappingProfile:
    retailer_id: str
    transaction_set_code: str
    header_mappings: Tuple[MappingRule, ...] = ()
    line_mappings: Tuple[MappingRule, ...] = ()
    element_delimiter: str = "*"
    description: str = ""
    version: str = "1"
    loop_segment_id: Optional[str] = None  # overrides the transaction set's default loop marker

    @property
    def key(self) -> Tuple[str, str]:
        return profile_key(self.retailer_id, self.transaction_set_code)

    def validate(self, source: str = "<memory>") -> None:
        """Check the structural invariants; raise InvalidProfile on the first violation."""
        if not self.retailer_id:
            raise InvalidProfile(source, "retailerId is required")
        if not self.transaction_set_code:
            raise InvalidProfile(source, "transactionSetCode is required")
        if len(self.element_delimiter) != 1:
            raise InvalidProfile(source, f"elementDelimiter must be a single character, got {self.element_delimiter!r}")
        for scope, rules in (("headerMappings", self.header_mappings), ("lineMappings", self.line_mappings)):
            seen: Dict[str, List[Optional[str]]] = {}
            for idx, r in enumerate(rules):
                where = f"{scope}[{idx}]"
                if not r.segment_id:
                    raise InvalidProfile(source, f"{where}: segmentId must not be empty")
                if r.element_position < 1:
                    raise InvalidProfile(source, f"{where}: elementPosition must be >= 1")
                if not r.target_field:
                    raise InvalidProfile(source, f"{where}: targetField must not be empty")
                qualifiers = seen.setdefault(r.target_field, [])
                # Same target only allowed when every rule for it carries a distinct qualifier
                if qualifiers and (r.qualifier is None or None in qualifiers or r.qualifier in qualifiers):
                    raise InvalidProfile(source, f"{where}: duplicate targetField '{r.target_field}' in {scope}")
                qualifiers.append(r.qualifier)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "MappingProfile":
        loop = data.get("loopSegmentId")
        return MappingProfile(
            retailer_id=str(data.get("retailerId") or "").strip().upper(),
            transaction_set_code=str(data.get("transactionSetCode") or "").strip(),
            header_mappings=tuple(MappingRule.from_dict(r) for r in data.get("headerMappings") or []),
            line_mappings=tuple(MappingRule.from_dict(r, line_level=True) for r in data.get("lineMappings") or []),
            element_delimiter=str(data.get("elementDelimiter") or "*"),
            description=str(data.get("description") or ""),
            version=str(data.get("version") or "1"),
            loop_segment_id=str(loop).strip().upper() if loop else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "retailerId": self.retailer_id,
            "transactionSetCode": self.transaction_set_code,
            "description": self.description,
            "version": self.version,
            "elementDelimiter": self.element_delimiter,
            "loopSegmentId": self.loop_segment_id,
            "headerMappings": [r.to_dict() for r in self.header_mappings],
            "lineMappings": [r.to_dict() for r in self.line_mappings],
        }


def profile_key(retailer_id: str, transaction_set_code: str) -> Tuple[str, str]:
    return retailer_id.strip().upper(), transaction_set_code.strip()
