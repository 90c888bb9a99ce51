#!/usr/bin/env python3
"""Big-screen stage that renders the presentation phases."""

from __future__ import annotations

import math
import random
import tkinter as tk
from pathlib import Path
from tkinter import ttk
from typing import Any, Callable, Dict, List, Optional, Tuple

from PIL import Image, ImageOps, ImageTk

from lottery_config import Participant, resolve_path
from phase_sequencer import Phase

PHASE_CAPTIONS = {
    Phase.IDLE: "等待开始",
    Phase.PREPARING: "准备抽奖",
    Phase.ACTIVATING: "启动中",
    Phase.SHUFFLING: "抽奖中",
    Phase.REVEALING: "揭晓中奖者",
    Phase.CELEBRATING: "恭喜中奖",
}

PALETTE = ["#ff5e5b", "#ffe66d", "#00f5d4", "#9b5de5", "#f15bb5", "#5ee1ff"]

ACCENT = "#ffe66d"
NEAR_NAME = "#80f7ff"
FAR_NAME = "#3a6d8c"


class StageWindow(tk.Toplevel):
    """Audience view. It only draws what the sequencer reports."""

    FRAME_MS = 40
    MAX_NAMES = 80
    RINGS = 5
    SLOW_SPIN = 0.015
    FAST_SPIN = 0.09
    CONFETTI = 140

    def __init__(
        self,
        root: tk.Tk,
        base_dir: Path,
        title: str,
        background_color: str,
        background_path: Optional[str],
        screen_geometry: Optional[Dict[str, int]],
        on_close: Callable[[], None],
    ) -> None:
        super().__init__(root)
        self.base_dir = base_dir
        self.background_path = background_path
        self.on_close = on_close

        self.title(title)
        if screen_geometry and screen_geometry.get("width") and screen_geometry.get("height"):
            self.geometry(
                f"{screen_geometry['width']}x{screen_geometry['height']}"
                f"+{screen_geometry.get('x', 0)}+{screen_geometry.get('y', 0)}"
            )
        else:
            self.geometry(f"{int(self.winfo_screenwidth() * 0.8)}x{int(self.winfo_screenheight() * 0.8)}")
        self.fullscreen = False
        self.protocol("WM_DELETE_WINDOW", self._close)
        self.bind("<Escape>", self._escape)
        self.bind("<F11>", self._flip_fullscreen)

        header = ttk.Frame(self, padding=8)
        header.pack(fill=tk.X)
        self.prize_var = tk.StringVar(value="")
        self.phase_var = tk.StringVar(value=PHASE_CAPTIONS[Phase.IDLE])
        ttk.Label(header, textvariable=self.prize_var, font=("Helvetica", 14, "bold")).pack(side=tk.LEFT)
        ttk.Label(header, textvariable=self.phase_var).pack(side=tk.LEFT, padx=12)
        ttk.Label(header, text="F11全屏 · Esc关闭", foreground="#5ee1ff").pack(side=tk.RIGHT)

        self.canvas = tk.Canvas(self, bg=background_color or "#0b0f1c", highlightthickness=0)
        self.canvas.pack(fill=tk.BOTH, expand=True)
        self.canvas.bind("<Configure>", self._on_resize)

        self.background_source: Optional[Image.Image] = None
        self.background_photo: Optional[ImageTk.PhotoImage] = None

        self.phase = Phase.IDLE
        self.names: List[str] = []
        self.winners: List[Participant] = []
        self.drum: List[Dict[str, Any]] = []
        self.drum_radius = 0.0
        self.spin = 0.0
        self.confetti: List[Dict[str, Any]] = []
        self.confetti_floor = 0
        self.frame_job: Optional[str] = None
        self._tick()

    # --- window handling ---
    def _close(self) -> None:
        if self.frame_job:
            self.after_cancel(self.frame_job)
            self.frame_job = None
        self.destroy()
        if self.on_close:
            self.on_close()

    def _escape(self, event: tk.Event) -> None:
        if self.fullscreen:
            self._flip_fullscreen()
        else:
            self._close()

    def _flip_fullscreen(self, event: Optional[tk.Event] = None) -> None:
        self.fullscreen = not self.fullscreen
        self.attributes("-fullscreen", self.fullscreen)

    def _on_resize(self, event: tk.Event) -> None:
        self._fit_background(event.width, event.height)
        if self.phase in (Phase.ACTIVATING, Phase.SHUFFLING):
            self._build_drum()
        elif self.phase in (Phase.REVEALING, Phase.CELEBRATING):
            self._draw_winners()

    def _canvas_size(self) -> Tuple[int, int]:
        return self.canvas.winfo_width() or 1200, self.canvas.winfo_height() or 700

    def _fit_background(self, width: int, height: int) -> None:
        if not self.background_path or width < 2 or height < 2:
            return
        if self.background_source is None:
            path = resolve_path(self.base_dir, self.background_path)
            if not path.is_file():
                return
            self.background_source = Image.open(path).convert("RGB")
        fitted = ImageOps.fit(self.background_source, (width, height), Image.Resampling.LANCZOS)
        self.background_photo = ImageTk.PhotoImage(fitted)
        self.canvas.delete("backdrop")
        self.canvas.create_image(0, 0, image=self.background_photo, anchor=tk.NW, tags="backdrop")
        self.canvas.tag_lower("backdrop")

    # --- sequencer hooks ---
    def show_prize(self, prize_name: str, participants: List[Participant]) -> None:
        self.prize_var.set(prize_name)
        self.names = [person.name for person in participants] or ["暂无人员"]
        self.winners = []

    def show_phase(self, phase: Phase) -> None:
        self.phase = phase
        self.phase_var.set(PHASE_CAPTIONS[phase])
        if phase is Phase.IDLE:
            self.spin = 0.0
            if not self.winners:
                self._clear()
        elif phase is Phase.PREPARING:
            self.winners = []
            self._show_banner("准备")
        elif phase is Phase.ACTIVATING:
            self.spin = self.SLOW_SPIN
            self._build_drum()
        elif phase is Phase.SHUFFLING:
            self.spin = self.FAST_SPIN
        elif phase is Phase.REVEALING:
            self.spin = 0.0
            self._draw_winners()
        elif phase is Phase.CELEBRATING:
            self._drop_confetti()

    def show_countdown(self, remaining: int) -> None:
        self._show_banner(str(remaining) if remaining > 0 else "开始!")

    def add_winner(self, winner: Participant, index: int) -> None:
        self.winners.append(winner)
        self._draw_winners()

    def show_message(self, text: str) -> None:
        self._show_banner(text, size=24)

    # --- drawing ---
    def _clear(self) -> None:
        self.canvas.delete("stage", "confetti")
        self.drum = []
        self.confetti = []

    def _show_banner(self, text: str, size: int = 96) -> None:
        self._clear()
        width, height = self._canvas_size()
        self.canvas.create_text(
            width // 2, height // 2, text=text, fill=ACCENT, font=("Helvetica", size, "bold"), tags="stage"
        )

    def _build_drum(self) -> None:
        """Lay the pool's names on rings of a vertical drum, repeating short pools."""
        self._clear()
        names = self.names or ["暂无人员"]
        slots = min(self.MAX_NAMES, max(len(names), self.RINGS * 6))
        per_ring = math.ceil(slots / self.RINGS)
        width, height = self._canvas_size()
        self.drum_radius = min(width, height) * 0.33
        band = height * 0.6 / self.RINGS
        top = height * 0.2 + band / 2
        for slot in range(slots):
            ring, seat = divmod(slot, per_ring)
            item = self.canvas.create_text(0, 0, text=names[slot % len(names)], tags="stage")
            self.drum.append(
                {
                    "item": item,
                    "angle": 2 * math.pi * seat / per_ring + ring * 0.4,
                    "y": top + ring * band,
                }
            )
        self._place_drum()

    def _place_drum(self) -> None:
        center = self._canvas_size()[0] / 2
        for slot in self.drum:
            depth = (math.cos(slot["angle"]) + 1) / 2
            self.canvas.coords(slot["item"], center + math.sin(slot["angle"]) * self.drum_radius, slot["y"])
            self.canvas.itemconfigure(
                slot["item"],
                fill=NEAR_NAME if depth > 0.5 else FAR_NAME,
                font=("Helvetica", 9 + int(depth * 9), "bold"),
            )

    def _draw_winners(self) -> None:
        self.canvas.delete("stage")
        self.drum = []
        width, height = self._canvas_size()
        self.canvas.create_rectangle(
            width * 0.18, height * 0.2, width * 0.82, height * 0.8,
            fill="#0d0f2b", outline=PALETTE[0], width=3, tags="stage",
        )
        self.canvas.create_text(
            width / 2, height * 0.27, text=f"恭喜中奖 · {self.prize_var.get()}",
            fill=ACCENT, font=("Helvetica", 28, "bold"), tags="stage",
        )
        columns = 1 if len(self.winners) <= 6 else 2
        rows = max(1, math.ceil(len(self.winners) / columns))
        line_height = min(48, (height * 0.45) / rows)
        for index, winner in enumerate(self.winners):
            column, row = divmod(index, rows)
            x = width / 2 if columns == 1 else width * (0.35 + 0.3 * column)
            self.canvas.create_text(
                x, height * 0.37 + row * line_height, text=f"{winner.name} ({winner.participant_id})",
                fill="#fefcff", font=("Helvetica", 20, "bold"), tags="stage",
            )

    def _drop_confetti(self) -> None:
        width, height = self._canvas_size()
        self.confetti = []
        for _ in range(self.CONFETTI):
            left = random.uniform(0, width)
            top = random.uniform(-height * 0.5, 0)
            item = self.canvas.create_rectangle(
                left, top, left + random.choice((6, 8, 10)), top + 4,
                fill=random.choice(PALETTE), outline="", tags="confetti",
            )
            self.confetti.append({"item": item, "fall": random.uniform(3.0, 6.5), "phase": random.uniform(0, 6.3)})
        self.confetti_floor = height

    # --- frame loop ---
    def _tick(self) -> None:
        if self.drum and self.spin:
            for slot in self.drum:
                slot["angle"] += self.spin
            self._place_drum()
        if self.confetti:
            self._settle_confetti()
        self.frame_job = self.after(self.FRAME_MS, self._tick)

    def _settle_confetti(self) -> None:
        remaining = []
        for piece in self.confetti:
            piece["phase"] += 0.2
            self.canvas.move(piece["item"], math.sin(piece["phase"]) * 2, piece["fall"])
            coords = self.canvas.coords(piece["item"])
            if coords and coords[1] > self.confetti_floor:
                self.canvas.delete(piece["item"])
            else:
                remaining.append(piece)
        self.confetti = remaining
