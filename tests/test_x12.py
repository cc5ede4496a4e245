import unittest
from pathlib import Path

from edi_services.errors import MalformedSegment
from edi_services.ingestion.x12 import detect_delimiters, parse_interchange

DATA = Path(__file__).parent / "data"


class TestX12Tokenizer(unittest.TestCase):
    def setUp(self):
        self.raw = (DATA / "target_850.edi").read_text()

    def test_detects_delimiters_from_isa(self):
        d = detect_delimiters(self.raw)
        self.assertEqual((d.element, d.component, d.segment), ("*", ">", "~"))

    def test_parses_envelope(self):
        ic = parse_interchange(self.raw)
        self.assertEqual(ic.sender_id, "TARGETEDI")
        self.assertEqual(ic.control_number, "000000042")
        self.assertEqual(len(ic.groups), 1)
        self.assertEqual(ic.groups[0].functional_id, "PO")
        tx = ic.first_transaction()
        self.assertEqual(tx.code, "850")
        self.assertEqual(tx.control_number, "0001")
        self.assertEqual(tx.segments[0], "BEG*00*SA*TGT-2026-00042**20260219")
        # CTT is body; SE closes the transaction
        self.assertEqual(tx.segments[-1], "CTT*2")
        self.assertEqual(tx.first_line, 3)

    def test_custom_delimiters(self):
        ic = parse_interchange(self.raw.replace("*", "|"))
        self.assertEqual(ic.delimiters.element, "|")
        self.assertEqual(ic.first_transaction().segments[0], "BEG|00|SA|TGT-2026-00042||20260219")

    def test_rejects_empty_and_short_content(self):
        with self.assertRaises(MalformedSegment):
            parse_interchange("")
        with self.assertRaises(MalformedSegment) as ctx:
            parse_interchange("ISA*00*~")
        self.assertEqual(ctx.exception.segment_id, "ISA")

    def test_rejects_content_not_starting_with_isa(self):
        with self.assertRaises(MalformedSegment):
            parse_interchange("GS" + self.raw)

    def test_segment_outside_group(self):
        lines = self.raw.splitlines()
        no_gs = "\n".join(ln for ln in lines if not ln.startswith("GS*"))
        with self.assertRaises(MalformedSegment) as ctx:
            parse_interchange(no_gs)
        self.assertEqual(ctx.exception.segment_id, "ST")
        self.assertIn("[Line 2 | Segment: ST]", str(ctx.exception))

    def test_missing_se_trailer(self):
        lines = self.raw.splitlines()
        cut = "\n".join(ln for ln in lines if not ln.startswith(("SE*", "GE*", "IEA*")))
        with self.assertRaises(MalformedSegment) as ctx:
            parse_interchange(cut)
        self.assertEqual(ctx.exception.segment_id, "ST")

    def test_no_transaction(self):
        lines = self.raw.splitlines()
        env_only = "\n".join([lines[0], lines[1], lines[-2], lines[-1]])
        ic = parse_interchange(env_only)
        with self.assertRaises(MalformedSegment):
            ic.first_transaction()


if __name__ == '__main__':
    unittest.main()
