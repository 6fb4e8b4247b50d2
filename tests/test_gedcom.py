import unittest
from datetime import datetime

from gedtree import gedcom as ged

FAMILY = """0 @F1@ FAM
1 HUSB @I1@
1 WIFE @I2@
1 CHIL @I3@
1 CHIL @I3@
1 MARR
2 DATE 3 MAR 1920
2 NOTE @N1@"""


class TestLines(unittest.TestCase):
    def test_parse_line(self):
        self.assertEqual(ged.parse_line("1 NAME John /Smith/"), (1, None, "NAME", "John /Smith/"))
        self.assertEqual(ged.parse_line("0 @I1@ INDI"), (0, "I1", "INDI", ""))
        self.assertIsNone(ged.parse_line("not gedcom"))

    def test_record_header(self):
        self.assertEqual(ged.record_header("0 @I1@ INDI\n1 SEX M"), ("I1", "INDI"))
        self.assertEqual(ged.record_header("0 HEAD\n1 CHAR UTF-8"), (None, "HEAD"))
        self.assertEqual(ged.record_header("0 @@ INDI"), (None, None))

    def test_split_records_normalises_line_endings(self):
        text = "0 HEAD\r\n1 SOUR X\r\n\r\n0 @I1@ INDI\r0 TRLR\r\n"
        self.assertEqual(list(ged.split_records(text)), ["0 HEAD\n1 SOUR X", "0 @I1@ INDI", "0 TRLR"])

    def test_normalize_merges_conc(self):
        record = "0 @N1@ NOTE abc\n1 CONC def\n1 CONC  ghi\n1 CONT next line"
        self.assertEqual(ged.normalize_record(record), "0 @N1@ NOTE abcdef ghi\n1 CONT next line")


class TestReformat(unittest.TestCase):
    def test_short_record_gets_crlf(self):
        self.assertEqual(ged.reformat_record("0 @I1@ INDI\n1 SEX M"), "0 @I1@ INDI\r\n1 SEX M\r\n")

    def test_long_line_split_into_conc(self):
        record = "0 @N1@ NOTE x\n1 NOTE " + "a" * 600
        out = ged.reformat_record(record)
        lines = out.split(ged.EOL)[:-1]

        self.assertEqual(len(lines), 4)
        self.assertTrue(all(len(line) <= ged.LINE_LENGTH for line in lines))
        self.assertTrue(lines[2].startswith("2 CONC "))
        self.assertEqual(ged.normalize_record(out), record)

    def test_split_never_follows_a_space(self):
        value = "x" + ("word " * 150).rstrip()
        record = "0 @N1@ NOTE\n1 NOTE " + value
        lines = ged.reformat_record(record).split(ged.EOL)[:-1]

        self.assertEqual(len(lines[1]), ged.LINE_LENGTH - 1)
        for line in lines[1:-1]:
            self.assertFalse(line.endswith(" "))
        self.assertEqual(ged.normalize_record(ged.EOL.join(lines)), record)


    def test_unparseable_long_line_kept_whole(self):
        stray = "y" * 300
        out = ged.reformat_record("0 @N1@ NOTE start\n" + stray)
        self.assertEqual(out, "0 @N1@ NOTE start\r\n" + stray + "\r\n")

    def test_long_line_without_value_kept_whole(self):
        tag = "_" + "T" * 300
        self.assertEqual(ged.reformat_record("1 " + tag), "1 " + tag + "\r\n")


class TestStructure(unittest.TestCase):
    def test_pointers_are_distinct(self):
        self.assertEqual(
            ged.pointers(FAMILY),
            [("HUSB", "I1"), ("WIFE", "I2"), ("CHIL", "I3"), ("NOTE", "N1")],
        )

    def test_family_members(self):
        self.assertEqual(ged.family_members(FAMILY), (["I1", "I2"], ["I3"]))
        self.assertEqual(ged.family_members("0 @F2@ FAM\n1 WIFE @I5@\n1 HUSB @I4@"), (["I4", "I5"], []))

    def test_names(self):
        record = "0 @I1@ INDI\n1 NAME John /Smith/\n1 NAME Johnny"
        self.assertEqual(ged.names(record), [("John /Smith/", "John", "Smith"), ("Johnny", "Johnny", "")])

    def test_first_value(self):
        record = "0 @I1@ INDI\n1 SEX M\n1 BIRT\n2 DATE 1 JAN 1900"
        self.assertEqual(ged.first_value(record, "SEX"), "M")
        self.assertEqual(ged.first_value(record, "DATE", level=2), "1 JAN 1900")
        self.assertIsNone(ged.first_value(record, "DEAT"))

    def test_change_block(self):
        block = ged.change_block("alice", datetime(2026, 10, 19, 14, 5, 9))
        self.assertEqual(block, "\n1 CHAN\n2 DATE 19 OCT 2026\n3 TIME 14:05:09\n2 _WT_USER alice")

    def test_strip_structure(self):
        record = "0 @I1@ INDI\n1 NAME A\n1 CHAN\n2 DATE 1 JAN 2000\n3 TIME 10:00:00\n1 SEX M"
        self.assertEqual(ged.strip_structure(record, "CHAN"), "0 @I1@ INDI\n1 NAME A\n1 SEX M")


if __name__ == "__main__":
    unittest.main()
