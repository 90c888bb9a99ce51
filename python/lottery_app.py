#!/usr/bin/env python3
"""Tkinter operator console for the staged prize draw."""

from __future__ import annotations

import json
import logging
import random
import sys
import time
import tkinter as tk
from pathlib import Path
from tkinter import filedialog, messagebox, ttk
from typing import List, Optional

from audio_cues import DEFAULT_CUE_FILES, PygameAudio, cue_paths_from_config
from draw_session import DrawMode, is_effectively_complete
from lottery import format_winners, save_csv, status_label
from lottery_config import (
    Participant,
    default_export_name,
    read_json,
    resolve_path,
    sample_document,
    write_json,
)
from lottery_session import LotterySession
from phase_sequencer import ManualRevealSequencer, Phase, PhaseSequencer, PhaseTimings, TkScheduler
from stage_window import StageWindow

logger = logging.getLogger(__name__)

ANIMATION_MODES = ("timed", "manual")


class LotteryApp:
    def __init__(self, root: tk.Tk, config_path: Path) -> None:
        self.root = root
        self.config_path = config_path
        self.base_dir = config_path.parent

        self._ensure_default_files()
        self.config = self._load_config()
        self.lottery_file = resolve_path(self.base_dir, self.config["lottery_file"])
        self.export_dir = resolve_path(self.base_dir, self.config["export_dir"])
        self.export_dir.mkdir(parents=True, exist_ok=True)

        try:
            self.session = LotterySession.from_file(self.lottery_file)
        except (FileNotFoundError, ValueError) as exc:
            messagebox.showerror("配置错误", f"无法加载抽奖配置 {self.lottery_file}: {exc}")
            raise SystemExit(1)

        self.scheduler = TkScheduler(self.root)
        self.audio = PygameAudio(
            self.scheduler,
            cue_paths_from_config(self.base_dir, self.config),
            volume=float(self.config["volume"]),
            muted=bool(self.config["muted"]),
        )
        try:
            timings = PhaseTimings.from_config(self.config.get("phase_timings"))
        except ValueError as exc:
            messagebox.showwarning("配置错误", f"动画时长无效，已使用默认值: {exc}")
            timings = PhaseTimings()
        self.sequencer = PhaseSequencer(
            self.scheduler,
            audio=self.audio,
            timings=timings,
            on_phase=self._on_phase,
            on_tick=self._on_tick,
            on_reveal=self._on_reveal,
            on_complete=self._on_presentation_complete,
        )
        self.session.sequencer = self.sequencer
        self.manual = ManualRevealSequencer(
            on_phase=self._on_manual_phase,
            on_reveal=self._on_reveal,
        )
        self.stage_window: Optional[StageWindow] = None
        self.last_space_time = 0.0

        self.seed_var = tk.StringVar()
        self.mode_var = tk.StringVar(value=str(self.config["animation_mode"]))
        self.header_var = tk.StringVar()
        self.current_var = tk.StringVar(value="当前未选择奖项")
        self.phase_var = tk.StringVar(value="")
        self.volume_var = tk.DoubleVar(value=self.audio.volume * 100)
        self.mute_var = tk.StringVar()

        self._build_ui()
        self.root.bind("<space>", self._handle_space)
        self._refresh_all()

    def _load_config(self) -> dict:
        if not self.config_path.exists():
            messagebox.showerror("配置错误", f"未找到配置文件: {self.config_path}")
            raise SystemExit(1)
        config = read_json(self.config_path)
        config.setdefault("lottery_file", "data/lottery-config.json")
        config.setdefault("export_dir", "output")
        config.setdefault("audio_dir", "audio")
        for key, file_name in DEFAULT_CUE_FILES.items():
            config.setdefault(key, file_name)
        config.setdefault("animation_mode", "timed")
        config.setdefault("phase_timings", {})
        config.setdefault("volume", 0.7)
        config.setdefault("muted", False)
        config.setdefault("stage_background_color", "#0b0f1c")
        config.setdefault("stage_background", "")
        config.setdefault("stage_screen_x", 0)
        config.setdefault("stage_screen_y", 0)
        config.setdefault("stage_screen_width", 0)
        config.setdefault("stage_screen_height", 0)
        if config["animation_mode"] not in ANIMATION_MODES:
            logger.warning("Unknown animation_mode %r, using timed", config["animation_mode"])
            config["animation_mode"] = "timed"
        return config

    def _ensure_default_files(self) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        if not self.config_path.exists():
            default_config = {
                "lottery_file": "data/lottery-config.json",
                "export_dir": "output",
                "audio_dir": "audio",
                **DEFAULT_CUE_FILES,
                "animation_mode": "timed",
                "phase_timings": {},
                "volume": 0.7,
                "muted": False,
                "stage_background_color": "#0b0f1c",
                "stage_background": "",
            }
            write_json(self.config_path, default_config)

        data_dir = self.base_dir / "data"
        data_dir.mkdir(parents=True, exist_ok=True)
        lottery_path = data_dir / "lottery-config.json"
        if not lottery_path.exists():
            write_json(lottery_path, sample_document())

    def _save_config_file(self) -> None:
        write_json(self.config_path, self.config)

    # --- layout ---
    def _build_ui(self) -> None:
        self.root.title(self.session.settings.title)

        header_frame = ttk.Frame(self.root, padding=10)
        header_frame.pack(fill=tk.X)
        ttk.Label(header_frame, textvariable=self.header_var, font=("Helvetica", 16, "bold")).pack(anchor=tk.W)

        settings_frame = ttk.LabelFrame(self.root, text="抽奖设置", padding=10)
        settings_frame.pack(fill=tk.X, padx=10, pady=5)
        ttk.Label(settings_frame, text="随机种子 (可选):").grid(row=0, column=0, sticky=tk.W, padx=5, pady=2)
        ttk.Entry(settings_frame, textvariable=self.seed_var, width=20).grid(
            row=0, column=1, sticky=tk.W, padx=5, pady=2
        )
        ttk.Label(settings_frame, text="动画模式:").grid(row=0, column=2, sticky=tk.W, padx=5, pady=2)
        mode_combo = ttk.Combobox(
            settings_frame, textvariable=self.mode_var, values=ANIMATION_MODES, state="readonly", width=10
        )
        mode_combo.grid(row=0, column=3, sticky=tk.W, padx=5, pady=2)
        mode_combo.bind("<<ComboboxSelected>>", self._on_mode_change)
        ttk.Label(settings_frame, text="音量:").grid(row=0, column=4, sticky=tk.W, padx=5, pady=2)
        ttk.Scale(
            settings_frame,
            from_=0,
            to=100,
            variable=self.volume_var,
            command=self._on_volume_change,
            length=140,
        ).grid(row=0, column=5, sticky=tk.W, padx=5, pady=2)
        ttk.Button(settings_frame, textvariable=self.mute_var, command=self._toggle_mute).grid(
            row=0, column=6, sticky=tk.W, padx=5, pady=2
        )

        overview_frame = ttk.LabelFrame(self.root, text="奖项概览", padding=10)
        overview_frame.pack(fill=tk.BOTH, expand=True, padx=10, pady=5)
        self.prizes_tree = ttk.Treeview(
            overview_frame, columns=("number", "name", "count", "pool", "status"), show="headings", height=8
        )
        for col, label, width in (
            ("number", "序号", 50),
            ("name", "奖项名称", 140),
            ("count", "数量", 60),
            ("pool", "候选人数", 80),
            ("status", "状态", 260),
        ):
            self.prizes_tree.heading(col, text=label)
            self.prizes_tree.column(col, width=width, anchor=tk.W)
        self.prizes_tree.pack(fill=tk.BOTH, expand=True)
        self.prizes_tree.bind("<Double-1>", lambda event: self._start_selected())

        overview_actions = ttk.Frame(self.root, padding=(10, 0))
        overview_actions.pack(fill=tk.X)
        ttk.Button(overview_actions, text="开始抽取该奖项", command=self._start_selected).pack(side=tk.LEFT, padx=5)
        ttk.Button(overview_actions, text="打开大屏", command=self._open_stage_window).pack(side=tk.LEFT, padx=5)
        ttk.Button(overview_actions, text="导入配置", command=self._import_config).pack(side=tk.LEFT, padx=5)
        ttk.Button(overview_actions, text="导出配置", command=self._export_config).pack(side=tk.LEFT, padx=5)
        ttk.Button(overview_actions, text="导出结果", command=self._export_results).pack(side=tk.LEFT, padx=5)
        ttk.Button(overview_actions, text="重置抽奖", command=self._reset_lottery).pack(side=tk.LEFT, padx=5)

        draw_frame = ttk.LabelFrame(self.root, text="当前抽奖", padding=10)
        draw_frame.pack(fill=tk.BOTH, expand=True, padx=10, pady=5)
        ttk.Label(draw_frame, textvariable=self.current_var, font=("Helvetica", 13, "bold")).pack(anchor=tk.W)
        ttk.Label(draw_frame, textvariable=self.phase_var, foreground="#2a7ab0").pack(anchor=tk.W)
        self.winners_tree = ttk.Treeview(draw_frame, columns=("order", "id", "name", "absent"), show="headings", height=8)
        for col, label, width in (
            ("order", "顺序", 50),
            ("id", "工号", 120),
            ("name", "姓名", 140),
            ("absent", "缺席", 60),
        ):
            self.winners_tree.heading(col, text=label)
            self.winners_tree.column(col, width=width, anchor=tk.W)
        self.winners_tree.pack(fill=tk.BOTH, expand=True, pady=5)

        draw_actions = ttk.Frame(draw_frame)
        draw_actions.pack(fill=tk.X)
        ttk.Button(draw_actions, text="抽取下一位", command=self._draw_next).pack(side=tk.LEFT, padx=5)
        ttk.Button(draw_actions, text="抽取全部", command=self._draw_all).pack(side=tk.LEFT, padx=5)
        ttk.Button(draw_actions, text="标记/取消缺席", command=self._toggle_absent).pack(side=tk.LEFT, padx=5)
        ttk.Button(draw_actions, text="缺席重抽", command=self._redraw_absent).pack(side=tk.LEFT, padx=5)
        ttk.Button(draw_actions, text="中止动画", command=self._cancel_presentation).pack(side=tk.LEFT, padx=5)
        ttk.Button(draw_actions, text="返回概览", command=self._back_to_overview).pack(side=tk.LEFT, padx=5)

        output_frame = ttk.LabelFrame(self.root, text="抽奖记录", padding=10)
        output_frame.pack(fill=tk.BOTH, expand=True, padx=10, pady=5)
        self.output_text = tk.Text(output_frame, height=8, wrap=tk.WORD)
        self.output_text.pack(fill=tk.BOTH, expand=True)

    # --- refresh ---
    def _refresh_all(self) -> None:
        self._refresh_header()
        self._refresh_prizes()
        self._refresh_current()

    def _refresh_header(self) -> None:
        self.root.title(self.session.settings.title)
        self.header_var.set(
            f"{self.session.settings.title}  ·  可抽奖人数 {self.session.available_count()}"
            f"/{len(self.session.all_participants())}"
        )
        self.mute_var.set("取消静音" if self.audio.muted else "静音")

    def _refresh_prizes(self) -> None:
        self.prizes_tree.delete(*self.prizes_tree.get_children())
        for prize, progress in self.session.overview():
            self.prizes_tree.insert(
                "",
                tk.END,
                iid=prize.prize_id,
                values=(
                    prize.number,
                    prize.name,
                    prize.draw_count,
                    progress.eligible,
                    status_label(self.session, prize.prize_id),
                ),
            )

    def _refresh_current(self) -> None:
        self.winners_tree.delete(*self.winners_tree.get_children())
        current = self.session.current
        if current is None:
            self.current_var.set("当前未选择奖项")
            return
        prize = current.prize
        self.current_var.set(
            f"{prize.number}. {prize.name}  ({len(current.committed_winners)}/{prize.draw_count})"
            f"  {status_label(self.session, prize.prize_id)}"
        )
        for index, winner in enumerate(current.committed_winners, start=1):
            absent = "是" if self.session.is_marked_absent(winner.participant_id) else ""
            self.winners_tree.insert(
                "",
                tk.END,
                iid=winner.participant_id,
                values=(index, winner.participant_id, winner.name, absent),
            )

    def _append_output(self, text: str) -> None:
        self.output_text.insert(tk.END, text + "\n")
        self.output_text.see(tk.END)

    # --- draw flow ---
    def _set_seed(self) -> None:
        seed = self.seed_var.get().strip()
        if seed:
            try:
                random.seed(int(seed))
            except ValueError:
                messagebox.showerror("种子错误", "随机种子必须是整数。")
                raise

    def _selected_prize_id(self) -> Optional[str]:
        selection = self.prizes_tree.selection()
        return selection[0] if selection else None

    def _start_selected(self) -> None:
        prize_id = self._selected_prize_id()
        if not prize_id:
            messagebox.showwarning("提示", "请先在概览中选择奖项。")
            return
        self.manual.cancel()
        try:
            self.session.start_prize_draw(prize_id)
        except ValueError as exc:
            messagebox.showerror("配置错误", str(exc))
            return
        self._refresh_all()

    def _draw_next(self) -> None:
        self._draw(DrawMode.STEPWISE)

    def _draw_all(self) -> None:
        self._draw(DrawMode.BATCH)

    def _draw(self, mode: DrawMode) -> None:
        current = self.session.current
        if current is None:
            messagebox.showwarning("提示", "请先选择要抽取的奖项。")
            return
        if self.sequencer.is_running:
            return
        if current.remaining_slots == 0:
            messagebox.showinfo("提示", "该奖项已抽完。")
            return
        try:
            self._set_seed()
        except ValueError:
            return
        if self.mode_var.get() == "timed":
            self._start_presentation(mode)
        else:
            self._manual_draw(mode)

    def _start_presentation(self, mode: DrawMode) -> None:
        self._open_stage_window()
        try:
            self.session.start_presentation(mode)
        except ValueError as exc:
            messagebox.showwarning("无法抽奖", str(exc))
            self._refresh_all()

    def _manual_draw(self, mode: DrawMode) -> None:
        current = self.session.current
        pool = self.session.eligible_for(current.prize.prize_id)
        try:
            winners = self.session.draw_next() if mode is DrawMode.STEPWISE else self.session.draw_all()
        except ValueError as exc:
            messagebox.showwarning("无法抽奖", str(exc))
            self._refresh_all()
            return
        if self.stage_window is not None:
            if not self.manual.is_running:
                self.stage_window.show_prize(current.prize.name, pool)
                self.manual.begin()
            self.manual.reveal(winners)
        self._log_winners(winners)
        if is_effectively_complete(current, self.session.participant_lists, self.session.settings):
            self.manual.finish()
        self._refresh_all()

    def _log_winners(self, winners: List[Participant]) -> None:
        if not winners:
            self._append_output("本次未抽出新的中奖名单。")
            return
        prize_name = self.session.current.prize.name if self.session.current else ""
        self._append_output(f"{time.strftime('%H:%M:%S')} | {prize_name} | {format_winners(winners)}")

    def _toggle_absent(self) -> None:
        selection = self.winners_tree.selection()
        if not selection:
            messagebox.showwarning("提示", "请先选择中奖者。")
            return
        try:
            for participant_id in selection:
                self.session.toggle_absent(participant_id)
        except (RuntimeError, ValueError) as exc:
            messagebox.showwarning("提示", str(exc))
        self._refresh_current()

    def _redraw_absent(self) -> None:
        if self.session.current is None:
            return
        if not self.session.current.pending_absent:
            messagebox.showinfo("提示", "没有标记为缺席的中奖者。")
            return
        try:
            self._set_seed()
        except ValueError:
            return
        try:
            replacements = self.session.redraw_absent()
        except RuntimeError as exc:
            messagebox.showwarning("提示", str(exc))
            return
        except ValueError as exc:
            messagebox.showwarning("无法重抽", str(exc))
            return
        self._append_output("缺席重抽:")
        self._log_winners(replacements)
        if self.stage_window is not None and not self.sequencer.is_running:
            self.stage_window.show_prize(self.session.current.prize.name, [])
            self.stage_window.show_phase(Phase.REVEALING)
            for index, winner in enumerate(self.session.current.committed_winners):
                self.stage_window.add_winner(winner, index)
        self._refresh_all()

    def _cancel_presentation(self) -> None:
        was_running = self.sequencer.is_running
        self.session.cancel_presentation()
        self.manual.cancel()
        if was_running:
            self._append_output("动画已中止，本次未记录中奖者。")
            if self.stage_window is not None:
                self.stage_window.show_message("抽奖已中止")
        self._refresh_all()

    def _back_to_overview(self) -> None:
        self.manual.cancel()
        self.session.back_to_overview()
        self._refresh_all()

    def _reset_lottery(self) -> None:
        if not messagebox.askyesno("确认", "确定要清空所有中奖结果并重新开始吗？"):
            return
        self.manual.cancel()
        self.session.reset()
        self.output_text.delete("1.0", tk.END)
        self._refresh_all()

    def _handle_space(self, event: tk.Event) -> None:
        current = time.monotonic()
        if current - self.last_space_time < 1.0:
            return
        self.last_space_time = current
        if self.session.current is not None:
            self._draw_next()

    # --- sequencer callbacks ---
    def _on_phase(self, phase: Phase) -> None:
        self.phase_var.set("" if phase is Phase.IDLE else f"动画阶段: {phase.value}")
        if self.stage_window is None:
            return
        context = self.sequencer.context
        if phase is Phase.PREPARING and context is not None:
            self.stage_window.show_prize(context.prize.name, context.participants)
        self.stage_window.show_phase(phase)

    def _on_manual_phase(self, phase: Phase) -> None:
        if self.stage_window is not None:
            self.stage_window.show_phase(phase)

    def _on_tick(self, remaining: int) -> None:
        if self.stage_window is not None:
            self.stage_window.show_countdown(remaining)

    def _on_reveal(self, winner: Participant, index: int) -> None:
        if self.stage_window is not None:
            self.stage_window.add_winner(winner, index)

    def _on_presentation_complete(self, winners: List[Participant]) -> None:
        self._log_winners(winners)
        self._refresh_all()

    # --- stage window ---
    def _open_stage_window(self) -> None:
        if self.stage_window is not None and self.stage_window.winfo_exists():
            self.stage_window.lift()
            return
        screen_geometry = {
            "x": int(self.config.get("stage_screen_x", 0) or 0),
            "y": int(self.config.get("stage_screen_y", 0) or 0),
            "width": int(self.config.get("stage_screen_width", 0) or 0),
            "height": int(self.config.get("stage_screen_height", 0) or 0),
        }
        self.stage_window = StageWindow(
            self.root,
            self.base_dir,
            self.session.settings.title,
            str(self.config.get("stage_background_color", "#0b0f1c")),
            self.config.get("stage_background") or None,
            screen_geometry,
            self._on_stage_closed,
        )

    def _on_stage_closed(self) -> None:
        self.stage_window = None
        self._cancel_presentation()

    # --- audio ---
    def _on_volume_change(self, value: str) -> None:
        self.audio.set_volume(float(value) / 100)
        self.config["volume"] = round(self.audio.volume, 2)
        self._save_config_file()

    def _toggle_mute(self) -> None:
        self.config["muted"] = self.audio.toggle_mute()
        self._save_config_file()
        self._refresh_header()

    def _on_mode_change(self, event: tk.Event) -> None:
        self.config["animation_mode"] = self.mode_var.get()
        self._save_config_file()

    # --- import / export ---
    def _import_config(self) -> None:
        path = filedialog.askopenfilename(title="选择要导入的抽奖配置", filetypes=[("JSON files", "*.json")])
        if not path:
            return
        path_obj = Path(path)
        try:
            document = read_json(path_obj)
        except (FileNotFoundError, json.JSONDecodeError) as exc:
            messagebox.showerror("导入失败", f"无法读取 {path_obj}: {exc}")
            return
        if self.session.ledger and not messagebox.askyesno("确认", "导入会清空当前抽奖结果，是否继续？"):
            return
        try:
            self.session.load_document(document)
        except ValueError as exc:
            messagebox.showerror("导入失败", str(exc))
            return
        self.manual.cancel()
        write_json(self.lottery_file, self.session.export_document())
        self.output_text.delete("1.0", tk.END)
        self._refresh_all()
        messagebox.showinfo("导入完成", f"已导入 {len(self.session.prizes)} 个奖项")

    def _export_config(self) -> None:
        path = filedialog.asksaveasfilename(
            title="选择导出位置",
            initialdir=str(self.export_dir),
            initialfile=default_export_name(),
            defaultextension=".json",
            filetypes=[("JSON files", "*.json")],
        )
        if not path:
            return
        write_json(Path(path), self.session.export_document())
        messagebox.showinfo("导出完成", f"已导出到 {path}")

    def _export_results(self) -> None:
        if not self.session.ledger:
            messagebox.showinfo("提示", "暂无中奖记录。")
            return
        path = filedialog.asksaveasfilename(
            title="选择导出位置",
            initialdir=str(self.export_dir),
            initialfile="results.csv",
            defaultextension=".csv",
            filetypes=[("CSV files", "*.csv")],
        )
        if not path:
            return
        save_csv(Path(path), self.session, self.session.results())
        messagebox.showinfo("导出完成", f"已导出到 {path}")


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    config_path = Path("python/config.json")
    if len(sys.argv) > 1:
        config_path = Path(sys.argv[1])
    root = tk.Tk()
    LotteryApp(root, config_path)
    root.mainloop()


if __name__ == "__main__":
    main()
