#!/usr/bin/env python3
"""Command line runner for a staged prize draw.

Usage examples:
  python python/lottery.py validate
  python python/lottery.py show
  python python/lottery.py draw --prize P002 --animate
  python python/lottery.py --seed 7 draw-all --csv output/results.csv
  python python/lottery.py export-template --output my-lottery.json

Every invocation is a fresh session: nothing is remembered between runs.
"""

from __future__ import annotations

import argparse
import csv
import logging
import random
import sched
import time
from pathlib import Path
from typing import Iterable, List, Optional

from draw_session import DrawMode
from lottery_config import (
    Participant,
    default_export_name,
    sample_document,
    write_json,
)
from lottery_session import LotterySession
from phase_sequencer import Phase, PhaseSequencer, PhaseTimings, SchedScheduler
from results_ledger import LotteryResult, PrizeStatus

logger = logging.getLogger(__name__)

STATUS_LABELS = {
    PrizeStatus.PENDING: "未抽奖",
    PrizeStatus.PARTIAL: "部分完成",
    PrizeStatus.COMPLETED: "已完成抽奖",
}


def status_label(session: LotterySession, prize_id: str) -> str:
    progress = session.progress(prize_id)
    if progress.exhausted:
        return f"最终抽奖结果 ({progress.drawn}/{progress.target}, 名单已抽完)"
    if progress.status is PrizeStatus.PARTIAL:
        return f"已抽出 {progress.drawn} 人，剩余 {progress.remaining} 人"
    return STATUS_LABELS[progress.status]


def format_winners(winners: Iterable[Participant]) -> str:
    return "、".join(f"{person.name} ({person.participant_id})" for person in winners)


def format_results(session: LotterySession) -> List[str]:
    lines = []
    for result in session.results():
        lines.append(
            f"{result.prize.number}. {result.prize.name} | {format_winners(result.winners) or '-'}"
            f" [{status_label(session, result.prize.prize_id)}]"
        )
    return lines


def save_csv(csv_path: Path, session: LotterySession, results: Iterable[LotteryResult]) -> None:
    fieldnames = [
        "prize_number",
        "prize_id",
        "prize_name",
        "order",
        "participant_id",
        "participant_name",
        "status",
    ]
    with csv_path.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=fieldnames)
        writer.writeheader()
        for result in results:
            status = session.progress(result.prize.prize_id)
            label = "exhausted" if status.exhausted else status.status.value
            for order, winner in enumerate(result.winners, start=1):
                writer.writerow(
                    {
                        "prize_number": result.prize.number,
                        "prize_id": result.prize.prize_id,
                        "prize_name": result.prize.name,
                        "order": order,
                        "participant_id": winner.participant_id,
                        "participant_name": winner.name,
                        "status": label,
                    }
                )


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Staged prize draw runner.")
    parser.add_argument(
        "--config",
        default="python/data/lottery-config.json",
        help="Path to the lottery document (default: python/data/lottery-config.json)",
    )
    parser.add_argument("--seed", type=int, help="Random seed for reproducible draws")
    parser.add_argument("--verbose", action="store_true", help="Log debug output")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("validate", help="Check the lottery document")
    subparsers.add_parser("show", help="Show prizes and their candidate pools")

    draw_parser = subparsers.add_parser("draw", help="Draw winners for a single prize")
    draw_parser.add_argument("--prize", required=True, help="Prize ID to draw")
    draw_parser.add_argument("--step", action="store_true", help="Draw a single winner only")
    draw_parser.add_argument("--animate", action="store_true", help="Play the timed phases in the terminal")

    draw_all_parser = subparsers.add_parser("draw-all", help="Draw every prize in order")
    draw_all_parser.add_argument("--csv", help="Write the results to this CSV file")

    template_parser = subparsers.add_parser("export-template", help="Write a sample lottery document")
    template_parser.add_argument("--output", help="Target file (default: lottery-config-<timestamp>.json)")

    return parser.parse_args(argv)


def _print_overview(session: LotterySession) -> None:
    print(f"{session.settings.title}  (可抽奖人数 {session.available_count()}/{len(session.all_participants())})")
    list_names = {item.list_id: item.name for item in session.participant_lists}
    for prize, progress in session.overview():
        bound = list_names.get(prize.participant_list_id, "全部名单") if prize.participant_list_id else "全部名单"
        print(
            f"{prize.number}. {prize.prize_id} {prize.name} x{prize.draw_count} | {bound}"
            f" | 候选 {progress.eligible} 人 | {status_label(session, prize.prize_id)}"
        )


def _animate_draw(session: LotterySession, mode: DrawMode) -> List[Participant]:
    scheduler = SchedScheduler(sched.scheduler(time.monotonic, time.sleep))
    drawn: List[Participant] = []

    def on_phase(phase: Phase) -> None:
        if phase is not Phase.IDLE:
            print(f"[{phase.value}]")

    session.sequencer = PhaseSequencer(
        scheduler,
        timings=PhaseTimings(activation_backup_ms=2000),
        on_phase=on_phase,
        on_tick=lambda remaining: print(f"  {remaining}..." if remaining else "  开始!"),
        on_reveal=lambda winner, index: print(f"  🎉 {index + 1}. {winner.name} ({winner.participant_id})"),
        on_complete=drawn.extend,
    )
    session.start_presentation(mode)
    scheduler.run()
    return drawn


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.seed is not None:
        random.seed(args.seed)

    if args.command == "export-template":
        output = Path(args.output or default_export_name())
        write_json(output, sample_document())
        print(f"已导出到 {output}")
        return

    config_path = Path(args.config)
    try:
        session = LotterySession.from_file(config_path)
    except FileNotFoundError:
        raise SystemExit(f"未找到配置文件: {config_path}")
    except ValueError as exc:
        raise SystemExit(f"配置文件无效: {exc}")

    if args.command == "validate":
        print(
            f"配置有效: {len(session.prizes)} 个奖项, {len(session.participant_lists)} 份名单, "
            f"{len(session.all_participants())} 名参与者"
        )
        return

    if args.command == "show":
        _print_overview(session)
        return

    mode = DrawMode.STEPWISE if getattr(args, "step", False) else DrawMode.BATCH
    try:
        if args.command == "draw":
            session.start_prize_draw(args.prize)
            if args.animate:
                winners = _animate_draw(session, mode)
            else:
                winners = session.draw_next() if mode is DrawMode.STEPWISE else session.draw_all()
            session.back_to_overview()
            print(f"本次中奖名单: {format_winners(winners) or '无'}")
            print(status_label(session, args.prize))
            return

        for prize in sorted(session.prizes, key=lambda item: item.number):
            session.start_prize_draw(prize.prize_id)
            if not session.eligible_for(prize.prize_id):
                logger.warning("Skipping %s: nobody left to draw", prize.name)
                session.back_to_overview()
                continue
            session.draw_all()
            session.back_to_overview()
    except ValueError as exc:
        raise SystemExit(str(exc))

    lines = format_results(session)
    if not lines:
        print("本次未抽出新的中奖名单。")
        return
    print("本次中奖名单:")
    for line in lines:
        print(f"- {line}")
    if args.csv:
        csv_path = Path(args.csv)
        csv_path.parent.mkdir(parents=True, exist_ok=True)
        save_csv(csv_path, session, session.results())
        print(f"已写入 {csv_path}")


if __name__ == "__main__":
    main()
