"""Pygame UI shell for the reaction-time biological age test.

Screens:
- Main menu
- Subject form (name, age, sex)
- Reaction test (per-round instructions, stimulus, rest break, results)
- History of stored results (delete, JSON export)

Deterministic timing/statistics/state lives in reaction_age/* (core modules).
"""

from __future__ import annotations

import json
import logging
import os
import random
import sqlite3
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from enum import StrEnum
from pathlib import Path
from typing import Protocol

import pygame

from .breaks import DEFAULT_BREAK_S, RestBreak
from .clock import RealScheduler
from .engine import Phase, ReactionTestConfig, ReactionTestEngine, build_reaction_test
from .norms import Sex
from .persistence import ResultStore, StoredRecord, export_records_json
from .results import SessionRecord, SubjectProfile, session_record_from_engine
from .stats import RoundSummary

log = logging.getLogger(__name__)

WINDOW_SIZE = (960, 540)
TARGET_FPS = 60

CONFIG_PATH_ENV = "REACTION_AGE_CONFIG_PATH"

# Shorter pre-delays than the engine defaults, as used in the field.
DEFAULT_APP_CONFIG = ReactionTestConfig(min_delay_ms=750, max_delay_ms=1250)

BG = (3, 9, 78)
PANEL_BG = (8, 18, 104)
BORDER = (226, 236, 255)
TEXT_MAIN = (238, 245, 255)
TEXT_MUTED = (186, 200, 224)
TEXT_WARN = (255, 206, 92)
ACTIVE_BG = (244, 248, 255)
ACTIVE_TEXT = (14, 26, 74)
STIMULUS_COLOR = (220, 40, 48)


class Screen(Protocol):
    def handle_event(self, event: pygame.event.Event) -> None: ...
    def render(self, surface: pygame.Surface) -> None: ...


@dataclass(frozen=True, slots=True)
class MenuItem:
    label: str
    action: Callable[[], None]


class App:
    def __init__(self, surface: pygame.Surface, font: pygame.font.Font) -> None:
        self._surface = surface
        self._font = font
        self._screens: list[Screen] = []
        self._running = True

    @property
    def running(self) -> bool:
        return self._running

    @property
    def font(self) -> pygame.font.Font:
        return self._font

    def push(self, screen: Screen) -> None:
        self._screens.append(screen)

    def pop(self) -> None:
        # Never pop the last/root screen; root handles its own quit/back behavior.
        if len(self._screens) > 1:
            self._screens.pop()

    def replace(self, screen: Screen) -> None:
        if len(self._screens) > 1:
            self._screens.pop()
        self._screens.append(screen)

    def quit(self) -> None:
        self._running = False

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.QUIT:
            self.quit()
            return
        if not self._screens:
            return
        self._screens[-1].handle_event(event)

    def render(self) -> None:
        if not self._screens:
            return
        self._screens[-1].render(self._surface)


def _draw_frame(surface: pygame.Surface, title: str, font: pygame.font.Font) -> pygame.Rect:
    """Fill the background and draw the titled panel; returns the content rect."""

    w, h = surface.get_size()
    surface.fill(BG)
    margin = max(10, min(26, w // 34))
    frame = pygame.Rect(margin, margin, max(260, w - margin * 2), max(220, h - margin * 2))
    pygame.draw.rect(surface, PANEL_BG, frame)
    pygame.draw.rect(surface, BORDER, frame, 2)

    header_h = max(34, min(52, h // 8))
    header = pygame.Rect(frame.x + 2, frame.y + 2, frame.w - 4, header_h)
    pygame.draw.line(surface, BORDER, (header.x, header.bottom), (header.right, header.bottom), 1)
    text = font.render(title, True, TEXT_MAIN)
    surface.blit(text, text.get_rect(center=header.center))

    return pygame.Rect(frame.x + 20, header.bottom + 16, frame.w - 40, frame.bottom - header.bottom - 32)


def _draw_lines(
    surface: pygame.Surface,
    font: pygame.font.Font,
    lines: list[str],
    *,
    x: int,
    y: int,
    color: tuple[int, int, int] = TEXT_MAIN,
) -> int:
    for line in lines:
        text = font.render(line, True, color)
        surface.blit(text, (x, y))
        y += text.get_height() + 6
    return y


def _draw_footer(surface: pygame.Surface, font: pygame.font.Font, hint: str) -> None:
    w, h = surface.get_size()
    foot = font.render(hint, True, TEXT_MUTED)
    surface.blit(foot, foot.get_rect(midbottom=(w // 2, h - max(16, h // 30))))


class MenuScreen:
    def __init__(self, app: App, title: str, items: list[MenuItem], *, is_root: bool = False) -> None:
        self._app = app
        self._title = title
        self._items = items
        self._selected = 0
        self._is_root = is_root
        self._title_font = pygame.font.Font(None, 42)
        self._item_font = pygame.font.Font(None, 32)
        self._hint_font = pygame.font.Font(None, 22)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        if event.key in (pygame.K_UP, pygame.K_w):
            self._move(-1)
        elif event.key in (pygame.K_DOWN, pygame.K_s):
            self._move(1)
        elif event.key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_SPACE):
            if self._items:
                self._items[self._selected].action()
        elif event.key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
            if self._is_root:
                self._app.quit()
            else:
                self._app.pop()

    def _move(self, delta: int) -> None:
        if not self._items:
            return
        self._selected = (self._selected + delta) % len(self._items)

    def render(self, surface: pygame.Surface) -> None:
        content = _draw_frame(surface, self._title, self._title_font)

        row_h = 44
        y = content.y + max(8, (content.h - row_h * len(self._items)) // 2)
        for idx, item in enumerate(self._items):
            row = pygame.Rect(content.x + 12, y, content.w - 24, row_h - 6)
            selected = idx == self._selected
            if selected:
                pygame.draw.rect(surface, ACTIVE_BG, row)
            else:
                pygame.draw.rect(surface, (62, 84, 152), row, 1)
            text = self._item_font.render(item.label, True, ACTIVE_TEXT if selected else TEXT_MAIN)
            surface.blit(text, (row.x + 10, row.y + (row.h - text.get_height()) // 2))
            y += row_h

        _draw_footer(surface, self._hint_font, "Up/Down: Move  |  Enter: Select  |  Esc: Back")


class SubjectFormScreen:
    _FIELDS = ("name", "age", "sex")

    def __init__(self, app: App, *, on_submit: Callable[[SubjectProfile], None]) -> None:
        self._app = app
        self._on_submit = on_submit
        self._name = ""
        self._age = ""
        self._sex = Sex.MALE
        self._field = 0
        self._confirm_out_of_range = False
        self._status = ""
        self._title_font = pygame.font.Font(None, 42)
        self._font = pygame.font.Font(None, 32)
        self._hint_font = pygame.font.Font(None, 22)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        key = event.key
        field = self._FIELDS[self._field]

        if key == pygame.K_ESCAPE:
            self._app.pop()
        elif key in (pygame.K_TAB, pygame.K_DOWN):
            self._field = (self._field + 1) % len(self._FIELDS)
        elif key == pygame.K_UP:
            self._field = (self._field - 1) % len(self._FIELDS)
        elif key in (pygame.K_RETURN, pygame.K_KP_ENTER):
            self._submit()
        elif field == "sex" and key in (pygame.K_LEFT, pygame.K_RIGHT, pygame.K_SPACE):
            self._sex = Sex.FEMALE if self._sex is Sex.MALE else Sex.MALE
        elif key == pygame.K_BACKSPACE:
            if field == "name":
                self._name = self._name[:-1]
            elif field == "age":
                self._age = self._age[:-1]
                self._confirm_out_of_range = False
        else:
            ch = getattr(event, "unicode", "")
            if not ch or not ch.isprintable():
                return
            if field == "name" and len(self._name) < 40:
                self._name += ch
            elif field == "age" and ch.isdigit() and len(self._age) < 3:
                self._age += ch
                self._confirm_out_of_range = False

    def _submit(self) -> None:
        if self._age == "":
            self._status = "Enter the subject's age."
            self._field = 1
            return
        profile = SubjectProfile(name=self._name.strip() or "Anonymous", age=int(self._age), sex=self._sex)
        if not profile.within_norm_range() and not self._confirm_out_of_range:
            self._confirm_out_of_range = True
            self._status = "Norms cover ages 7-16. Press Enter again to continue anyway."
            return
        self._on_submit(profile)

    def render(self, surface: pygame.Surface) -> None:
        content = _draw_frame(surface, "Subject", self._title_font)
        values = {"name": self._name, "age": self._age, "sex": self._sex.value}
        y = content.y + 20
        for idx, field in enumerate(self._FIELDS):
            active = idx == self._field
            row = pygame.Rect(content.x + 12, y, content.w - 24, 40)
            pygame.draw.rect(surface, ACTIVE_BG if active else PANEL_BG, row)
            pygame.draw.rect(surface, (62, 84, 152), row, 1)
            cursor = "_" if active and field != "sex" else ""
            label = f"{field.capitalize():<6} {values[field]}{cursor}"
            text = self._font.render(label, True, ACTIVE_TEXT if active else TEXT_MAIN)
            surface.blit(text, (row.x + 10, row.y + (row.h - text.get_height()) // 2))
            y += 52

        if self._status:
            _draw_lines(surface, self._font, [self._status], x=content.x + 12, y=y + 12, color=TEXT_WARN)

        _draw_footer(
            surface,
            self._hint_font,
            "Tab/Up/Down: Field  |  Left/Right: Sex  |  Enter: Continue  |  Esc: Back",
        )


class _Stage(StrEnum):
    INSTRUCTIONS = "instructions"
    RUNNING = "running"
    PAUSED = "paused"
    BREAK = "break"
    RESULTS = "results"


class ReactionTestScreen:
    def __init__(
        self,
        app: App,
        *,
        engine_factory: Callable[[], ReactionTestEngine],
        scheduler: RealScheduler,
        subject: SubjectProfile,
        store: ResultStore,
        break_s: float = DEFAULT_BREAK_S,
    ) -> None:
        self._app = app
        self._engine = engine_factory()
        self._subject = subject
        self._store = store
        self._break = RestBreak(clock=scheduler, duration_s=break_s)

        self._stage = _Stage.INSTRUCTIONS
        self._last_summary: RoundSummary | None = None
        self._record: SessionRecord | None = None
        self._saved_id: int | None = None
        self._status = ""

        self._engine.round_complete.connect(self._on_round_complete)
        self._engine.abuse_detected.connect(self._on_abuse)
        self._engine.reset_full_test()

        self._title_font = pygame.font.Font(None, 42)
        self._font = pygame.font.Font(None, 32)
        self._big_font = pygame.font.Font(None, 72)
        self._hint_font = pygame.font.Font(None, 22)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.MOUSEBUTTONDOWN:
            if self._stage is _Stage.RUNNING:
                self._engine.register_input()
            return
        if event.type != pygame.KEYDOWN:
            return

        key = event.key
        if key == pygame.K_ESCAPE:
            self._engine.reset_full_test()
            self._app.pop()
            return

        if self._stage is _Stage.RUNNING:
            if key == pygame.K_SPACE:
                self._engine.register_input()
        elif self._stage is _Stage.INSTRUCTIONS:
            if key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_SPACE):
                self._start_round()
        elif self._stage is _Stage.PAUSED:
            if key in (pygame.K_RETURN, pygame.K_KP_ENTER):
                if self._engine.resume_after_abuse():
                    self._stage = _Stage.RUNNING
            elif key == pygame.K_r:
                if self._engine.retry_current_round():
                    self._stage = _Stage.RUNNING
        elif self._stage is _Stage.BREAK:
            if key in (pygame.K_RETURN, pygame.K_KP_ENTER):
                self._break.skip()
        elif self._stage is _Stage.RESULTS:
            if key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_s):
                self._save()

    def _start_round(self) -> None:
        if self._engine.start_next_round():
            self._stage = _Stage.RUNNING

    def _on_round_complete(self, summary: RoundSummary, is_final: bool) -> None:
        self._last_summary = summary
        if is_final:
            self._record = session_record_from_engine(self._engine, subject=self._subject)
            self._stage = _Stage.RESULTS
            return
        self._stage = _Stage.BREAK
        self._break.start()

    def _on_abuse(self) -> None:
        self._stage = _Stage.PAUSED

    def _save(self) -> None:
        if self._record is None or self._saved_id is not None:
            return
        try:
            self._saved_id = self._store.save(self._record)
        except (sqlite3.Error, OSError) as exc:
            log.error("Saving session result failed: %s", exc)
            self._status = f"Could not save result: {exc}"
            return
        self._status = f"Saved as record #{self._saved_id}."

    def render(self, surface: pygame.Surface) -> None:
        if self._stage is _Stage.BREAK and self._break.is_over():
            self._stage = _Stage.INSTRUCTIONS

        snap = self._engine.snapshot()
        content = _draw_frame(surface, "Reaction Test", self._title_font)
        x = content.x + 12
        y = content.y + 8

        if self._stage is _Stage.INSTRUCTIONS:
            _draw_lines(
                surface,
                self._font,
                [
                    f"Round {snap.round_number + 1} of {snap.round_count}",
                    "",
                    "A red square will appear at random moments.",
                    "Press Space or click as soon as you see it.",
                    "Press only once per square; repeated presses pause the round.",
                    "",
                    "Press Enter to begin.",
                ],
                x=x,
                y=y,
            )
        elif self._stage is _Stage.RUNNING:
            header = f"Round {snap.round_number}/{snap.round_count}   Stimulus {snap.stimulus_number}/{snap.stimuli_per_round}"
            _draw_lines(surface, self._hint_font, [header], x=x, y=y, color=TEXT_MUTED)
            if snap.phase is Phase.STIMULUS_VISIBLE:
                side = min(content.w, content.h) // 3
                square = pygame.Rect(0, 0, side, side)
                square.center = content.center
                pygame.draw.rect(surface, STIMULUS_COLOR, square)
        elif self._stage is _Stage.PAUSED:
            _draw_lines(
                surface,
                self._font,
                [
                    "Too many presses!",
                    "Press only when you see the square, once per square.",
                    "",
                    "Enter: continue the round   R: restart the round",
                ],
                x=x,
                y=y,
                color=TEXT_WARN,
            )
        elif self._stage is _Stage.BREAK:
            lines = ["Rest break"]
            if self._last_summary is not None:
                lines.append(f"Round {self._last_summary.round_number} average: {self._last_summary.average_ms} ms")
            y = _draw_lines(surface, self._font, lines, x=x, y=y)
            timer = self._big_font.render(self._break.display(), True, TEXT_MAIN)
            surface.blit(timer, timer.get_rect(center=(content.centerx, y + 80)))
        else:
            self._render_results(surface, x=x, y=y)

        if self._status:
            _draw_lines(surface, self._hint_font, [self._status], x=x, y=content.bottom - 30, color=TEXT_WARN)

        hints = {
            _Stage.INSTRUCTIONS: "Enter: Start round  |  Esc: Abandon",
            _Stage.RUNNING: "Space/Click: React  |  Esc: Abandon",
            _Stage.PAUSED: "Enter: Continue  |  R: Restart round  |  Esc: Abandon",
            _Stage.BREAK: "Enter: Skip break  |  Esc: Abandon",
            _Stage.RESULTS: "Enter/S: Save  |  Esc: Back to menu",
        }
        _draw_footer(surface, self._hint_font, hints[self._stage])

    def _render_results(self, surface: pygame.Surface, *, x: int, y: int) -> None:
        record = self._record
        if record is None:
            _draw_lines(surface, self._font, ["No results."], x=x, y=y)
            return
        averages = ", ".join(f"{v} ms" for v in record.result.round_averages_ms)
        lines = [
            f"Subject: {record.subject.name}  (age {record.subject.age}, {record.subject.sex.value})",
            f"Average reaction time: {record.result.grand_average_ms} ms",
            f"Round averages: {averages}",
            "",
        ]
        if record.norm is None:
            lines.append("Biological age: not available (no valid reactions)")
        else:
            lines.extend(
                [
                    f"Biological age: {record.norm.biological_age:.2f}",
                    f"Development tempo: {record.norm.tempo_ratio:.2f} (norm {record.norm.norm_ms} ms)",
                    record.norm.label,
                ]
            )
        _draw_lines(surface, self._font, lines, x=x, y=y)


class HistoryScreen:
    _VISIBLE_ROWS = 9

    def __init__(self, app: App, *, store: ResultStore, export_dir: Path) -> None:
        self._app = app
        self._store = store
        self._export_dir = export_dir
        self._records: list[StoredRecord] = []
        self._selected = 0
        self._pending_delete: int | None = None
        self._status = ""
        self._title_font = pygame.font.Font(None, 42)
        self._font = pygame.font.Font(None, 26)
        self._hint_font = pygame.font.Font(None, 22)
        self._reload()

    def _reload(self) -> None:
        try:
            self._records = self._store.get_all()
        except (sqlite3.Error, OSError, ValueError, KeyError) as exc:
            log.error("Loading stored results failed: %s", exc)
            self._records = []
            self._status = f"Could not load results: {exc}"
        self._selected = min(self._selected, max(0, len(self._records) - 1))

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        key = event.key
        if key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
            self._app.pop()
            return
        if key != pygame.K_DELETE:
            self._pending_delete = None

        if key == pygame.K_UP and self._records:
            self._selected = (self._selected - 1) % len(self._records)
        elif key == pygame.K_DOWN and self._records:
            self._selected = (self._selected + 1) % len(self._records)
        elif key == pygame.K_DELETE and self._records:
            self._delete_selected()
        elif key == pygame.K_e:
            self._export()

    def _delete_selected(self) -> None:
        record_id = self._records[self._selected].record_id
        if self._pending_delete != record_id:
            self._pending_delete = record_id
            self._status = f"Press Delete again to remove record #{record_id}."
            return
        self._pending_delete = None
        try:
            self._store.delete(record_id)
        except (sqlite3.Error, OSError) as exc:
            log.error("Deleting record %d failed: %s", record_id, exc)
            self._status = f"Could not delete: {exc}"
            return
        self._status = f"Record #{record_id} deleted."
        self._reload()

    def _export(self) -> None:
        if not self._records:
            self._status = "Nothing to export."
            return
        path = self._export_dir / f"reaction_results_{time.strftime('%Y-%m-%d')}.json"
        try:
            export_records_json(self._records, path)
        except OSError as exc:
            log.error("Export to %s failed: %s", path, exc)
            self._status = f"Could not export: {exc}"
            return
        self._status = f"Exported {len(self._records)} records to {path}"

    def render(self, surface: pygame.Surface) -> None:
        content = _draw_frame(surface, "History", self._title_font)
        x = content.x + 12
        y = content.y + 4

        if not self._records:
            _draw_lines(surface, self._font, ["No stored results yet."], x=x, y=y, color=TEXT_MUTED)
        start = max(0, self._selected - self._VISIBLE_ROWS + 1)
        for idx in range(start, min(len(self._records), start + self._VISIBLE_ROWS)):
            stored = self._records[idx]
            rec = stored.record
            bio = "n/a" if rec.norm is None else f"{rec.norm.biological_age:.2f}"
            line = (
                f"#{stored.record_id}  {rec.recorded_at_utc[:10]}  {rec.subject.name}  "
                f"{rec.subject.age}y {rec.subject.sex.value}  {rec.result.grand_average_ms} ms  bio {bio}"
            )
            selected = idx == self._selected
            row = pygame.Rect(x, y, content.w - 24, 30)
            if selected:
                pygame.draw.rect(surface, ACTIVE_BG, row)
            text = self._font.render(line, True, ACTIVE_TEXT if selected else TEXT_MAIN)
            surface.blit(text, (row.x + 8, row.y + (row.h - text.get_height()) // 2))
            y += 34

        if self._status:
            _draw_lines(surface, self._hint_font, [self._status], x=x, y=content.bottom - 30, color=TEXT_WARN)
        _draw_footer(surface, self._hint_font, "Up/Down: Select  |  Delete: Remove  |  E: Export JSON  |  Esc: Back")


def load_app_config(path: Path | None = None) -> ReactionTestConfig:
    """Test configuration for the UI, optionally overridden by a JSON file."""

    if path is None:
        explicit = os.environ.get(CONFIG_PATH_ENV)
        if not explicit:
            return DEFAULT_APP_CONFIG
        path = Path(explicit).expanduser()
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        log.warning("Ignoring config file %s: %s", path, exc)
        return DEFAULT_APP_CONFIG
    if not isinstance(raw, dict):
        log.warning("Ignoring config file %s: expected a JSON object", path)
        return DEFAULT_APP_CONFIG
    try:
        return ReactionTestConfig.from_dict({**asdict(DEFAULT_APP_CONFIG), **raw})
    except (TypeError, ValueError) as exc:
        log.warning("Ignoring config file %s: %s", path, exc)
        return DEFAULT_APP_CONFIG


def _new_seed() -> int:
    return random.SystemRandom().randint(1, 2**31 - 1)


def run(*, max_frames: int | None = None, event_injector: Callable[[int], None] | None = None) -> int:
    pygame.init()

    pygame.display.set_caption("Reaction Age")
    surface = pygame.display.set_mode(WINDOW_SIZE, pygame.RESIZABLE)

    font = pygame.font.Font(None, 36)
    clock = pygame.time.Clock()

    app = App(surface=surface, font=font)
    scheduler = RealScheduler()
    store = ResultStore(ResultStore.default_path())
    config = load_app_config()

    def open_test(subject: SubjectProfile) -> None:
        seed = _new_seed()
        log.info("Starting test for %r (seed %d)", subject.name, seed)
        app.replace(
            ReactionTestScreen(
                app,
                engine_factory=lambda: build_reaction_test(scheduler=scheduler, seed=seed, config=config),
                scheduler=scheduler,
                subject=subject,
                store=store,
            )
        )

    def open_subject_form() -> None:
        app.push(SubjectFormScreen(app, on_submit=open_test))

    def open_history() -> None:
        app.push(HistoryScreen(app, store=store, export_dir=store.path.parent))

    main_items = [
        MenuItem("New test", open_subject_form),
        MenuItem("History", open_history),
        MenuItem("Quit", app.quit),
    ]

    app.push(MenuScreen(app, "Reaction Age", main_items, is_root=True))

    frame = 0
    try:
        while app.running:
            if event_injector is not None:
                event_injector(frame)

            scheduler.run_due()

            for event in pygame.event.get():
                app.handle_event(event)

            app.render()

            pygame.display.flip()

            frame += 1
            if max_frames is not None and frame >= max_frames:
                break

            clock.tick(TARGET_FPS)
    finally:
        pygame.quit()

    return 0
