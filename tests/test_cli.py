from __future__ import annotations

import csv
import io
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path

from lottery import main
from lottery_config import load_config, sample_document, write_json


class LotteryCliTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.root = Path(self.tmp.name)
        self.config_path = self.root / "lottery-config.json"
        write_json(self.config_path, sample_document())

    def run_cli(self, *args: str) -> str:
        buffer = io.StringIO()
        with redirect_stdout(buffer):
            main(["--config", str(self.config_path), *args])
        return buffer.getvalue()

    def test_validate(self) -> None:
        output = self.run_cli("validate")
        self.assertIn("4 个奖项", output)
        self.assertIn("9 名参与者", output)

    def test_show_lists_every_prize(self) -> None:
        output = self.run_cli("show")
        for name in ("特等奖", "一等奖", "二等奖", "嘉宾奖"):
            self.assertIn(name, output)
        self.assertIn("可抽奖人数 9/9", output)

    def test_missing_config_exits(self) -> None:
        with self.assertRaises(SystemExit):
            main(["--config", str(self.root / "missing.json"), "validate"])

    def test_invalid_config_exits(self) -> None:
        document = sample_document()
        document["prizes"][0]["drawCount"] = 0
        write_json(self.config_path, document)
        with self.assertRaises(SystemExit):
            self.run_cli("validate")

    def test_draw_single_step(self) -> None:
        output = self.run_cli("--seed", "3", "draw", "--prize", "P002", "--step")
        self.assertIn("本次中奖名单", output)
        self.assertIn("剩余 1 人", output)

    def test_unknown_prize_exits(self) -> None:
        with self.assertRaises(SystemExit):
            self.run_cli("draw", "--prize", "P999")

    def test_draw_all_writes_csv(self) -> None:
        csv_path = self.root / "out" / "results.csv"
        output = self.run_cli("--seed", "1", "draw-all", "--csv", str(csv_path))
        self.assertIn("本次中奖名单", output)
        with csv_path.open(encoding="utf-8", newline="") as handle:
            rows = list(csv.DictReader(handle))
        self.assertIn(len(rows), (6, 7))
        self.assertEqual(len({row["participant_id"] for row in rows}), len(rows))
        self.assertEqual(rows[0]["prize_id"], "P001")

    def test_export_template(self) -> None:
        output_path = self.root / "template.json"
        main(["export-template", "--output", str(output_path)])
        config = load_config(output_path)
        self.assertEqual([prize.prize_id for prize in config.prizes], ["P001", "P002", "P003", "P004"])


if __name__ == "__main__":
    unittest.main()
