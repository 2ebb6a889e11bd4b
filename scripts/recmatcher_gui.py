#!/usr/bin/env python3
"""Standalone PyQt6 review shell for Recmatcher."""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from concurrent.futures import Future
from dataclasses import replace
from datetime import datetime
from functools import partial
from pathlib import Path
from typing import Coroutine, Dict, List, Optional

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

try:
    from PyQt6.QtCore import QObject, QThread, QTimer, QUrl, Qt, pyqtSignal
    from PyQt6.QtGui import QBrush, QColor, QKeySequence, QShortcut, QTransform
    from PyQt6.QtMultimedia import QAudioOutput, QMediaPlayer
    from PyQt6.QtMultimediaWidgets import QGraphicsVideoItem
    from PyQt6.QtWidgets import (
        QApplication,
        QCheckBox,
        QComboBox,
        QGraphicsScene,
        QGraphicsView,
        QHBoxLayout,
        QLabel,
        QLineEdit,
        QListWidget,
        QListWidgetItem,
        QMainWindow,
        QPushButton,
        QSpinBox,
        QSplitter,
        QStatusBar,
        QTabWidget,
        QTextEdit,
        QVBoxLayout,
        QWidget,
    )
except ImportError as import_error:  # pragma: no cover - GUI import guard
    print(
        "PyQt6 is required to run the Recmatcher GUI. "
        "Install it with 'pip install PyQt6' and try again.",
        file=sys.stderr,
    )
    raise SystemExit(1) from import_error

from src.client import config
from src.client.gateway import AsyncGateway, BackendGateway
from src.client.player import CLIP, MOVIE, MediaPairController
from src.client.reconcile import SegmentAnnotation, is_bound_candidate
from src.client.schemas import BUCKET_NAMES, Candidate
from src.client.store import AppStore, PreviewPlan

try:
    from gui_helpers import (
        REVIEW_LABELS,
        append_jsonl,
        format_timestamp,
        island_color,
        iso_timestamp,
        load_gui_settings,
        review_label,
        save_gui_settings,
    )
except ImportError:  # pragma: no cover - package-style import
    from .gui_helpers import (  # type: ignore
        REVIEW_LABELS,
        append_jsonl,
        format_timestamp,
        island_color,
        iso_timestamp,
        load_gui_settings,
        review_label,
        save_gui_settings,
    )

logger = logging.getLogger("recmatcher.gui")

BUCKET_TITLES = {"top": "Top", "scene": "Scene", "corridor": "Corridor", "all": "All"}


class QtMediaHandle:
    """Media handle backed by a QMediaPlayer rendering into a graphics item."""

    def __init__(self, video_item: QGraphicsVideoItem, parent: QObject) -> None:
        self.player = QMediaPlayer(parent)
        self.audio = QAudioOutput(parent)
        self.player.setAudioOutput(self.audio)
        self.player.setVideoOutput(video_item)
        self._source: Optional[str] = None

    def load(self, source: str) -> None:
        if source == self._source:
            return
        if not Path(source).is_file():
            raise FileNotFoundError(source)
        self.player.setSource(QUrl.fromLocalFile(source))
        if self.player.error() != QMediaPlayer.Error.NoError:
            raise RuntimeError(self.player.errorString())
        self._source = source

    def seek(self, seconds: float) -> None:
        self.player.setPosition(int(round(seconds * 1000)))

    def play(self) -> None:
        self.player.play()

    def pause(self) -> None:
        self.player.pause()

    def position(self) -> float:
        return self.player.position() / 1000.0

    def set_muted(self, muted: bool) -> None:
        self.audio.setMuted(muted)


class OwnerLoopThread(QThread):
    """Runs the asyncio loop that owns the app store."""

    def __init__(self, parent: Optional[QObject] = None) -> None:
        super().__init__(parent)
        self.loop = asyncio.new_event_loop()

    def run(self) -> None:  # pragma: no cover - threaded flow
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()
        self.loop.close()

    def submit(self, coro: Coroutine) -> Future:
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        future.add_done_callback(self._log_failure)
        return future

    def stop(self) -> None:
        self.loop.call_soon_threadsafe(self.loop.stop)
        self.wait(2000)

    @staticmethod
    def _log_failure(future: Future) -> None:
        if not future.cancelled() and future.exception() is not None:
            logger.error("Store operation failed: %s", future.exception())


class LogBridge(QObject):
    """Forwards log records emitted on any thread into the log pane."""

    record_emitted = pyqtSignal(str, str)


class QtLogHandler(logging.Handler):
    def __init__(self, bridge: LogBridge) -> None:
        super().__init__(level=logging.INFO)
        self._bridge = bridge

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._bridge.record_emitted.emit(record.levelname, record.getMessage())
        except RuntimeError:
            pass


class StoreBridge(QObject):
    """Carries store notifications from the owner loop to the GUI thread.

    Payloads are built on the owner loop so the GUI never reads state that
    is being mutated.
    """

    segments_changed = pyqtSignal(list)
    selection_changed = pyqtSignal(object)
    candidates_changed = pyqtSignal(dict)
    error_raised = pyqtSignal(str)
    preview_requested = pyqtSignal(object)

    def __init__(self, store_holder: Dict[str, AppStore], parent: Optional[QObject] = None) -> None:
        super().__init__(parent)
        self._holder = store_holder

    def on_store_changed(self, topic: str) -> None:
        store = self._holder["store"]
        if topic in ("segments", "overrides", "review"):
            notes = [replace(note, row=note.row.model_copy(deep=True)) for note in store.annotations()]
            self.segments_changed.emit(notes)
        elif topic == "selection":
            self.selection_changed.emit(store.state.selected_id)
        elif topic == "candidates":
            row = store.state.selected
            buckets = {name: store.bucket(name) for name in BUCKET_NAMES}
            bound = {name: [is_bound_candidate(row, item) for item in items] for name, items in buckets.items()}
            self.candidates_changed.emit({"buckets": buckets, "bound": bound})
        elif topic == "error":
            self.error_raised.emit(store.state.last_error or "")

    def on_preview(self, plan: PreviewPlan) -> None:
        self.preview_requested.emit(plan)


class MainWindow(QMainWindow):
    """Main review window: segment list, paired players, candidate tabs."""

    def __init__(self, base_url: str) -> None:
        super().__init__()
        self._settings = load_gui_settings(config.SETTINGS_PATH)
        self._annotations: List[SegmentAnnotation] = []
        self._buckets: Dict[str, List[Candidate]] = {name: [] for name in BUCKET_NAMES}
        self._syncing_selection = False

        self._owner = OwnerLoopThread(self)
        holder: Dict[str, AppStore] = {}
        self._bridge = StoreBridge(holder, self)
        self._store = AppStore(AsyncGateway(BackendGateway(base_url)), preview=self._bridge.on_preview)
        holder["store"] = self._store
        self._store.subscribe(self._bridge.on_store_changed)
        self._store.update_playback(
            loop_pair=self._settings["loop_pair"],
            mirror_clip=self._settings["mirror_clip"],
            loop_count=self._settings["loop_count"],
            audio_source=self._settings["audio_source"],
        )

        self._setup_ui()
        self._controller = MediaPairController(
            QtMediaHandle(self.clip_item, self),
            QtMediaHandle(self.movie_item, self),
            on_error=self._on_media_error,
        )
        self._controller.set_audio_source(self._settings["audio_source"])
        self._timer = QTimer(self)
        self._timer.setInterval(config.TICK_INTERVAL_MS)
        self._timer.timeout.connect(self._controller.tick)

        self._log_bridge = LogBridge(self)
        self._log_handler = QtLogHandler(self._log_bridge)
        logging.getLogger("recmatcher").addHandler(self._log_handler)

        self._connect_signals()
        self._owner.start()
        self._timer.start()

    # ------------------------------------------------------------------
    def _setup_ui(self) -> None:
        self.setWindowTitle("Recmatcher")
        self.resize(1280, 800)

        central_widget = QWidget(self)
        layout = QVBoxLayout(central_widget)

        project_row = QHBoxLayout()
        self.root_edit = QLineEdit(self._settings["project_root"], central_widget)
        self.root_edit.setPlaceholderText("Project root")
        self.movie_edit = QLineEdit(self._settings["movie_path"], central_widget)
        self.movie_edit.setPlaceholderText("Movie file")
        self.clip_edit = QLineEdit(self._settings["clip_path"], central_widget)
        self.clip_edit.setPlaceholderText("Clip file")
        self.open_button = QPushButton("Open", central_widget)
        project_row.addWidget(QLabel("Root:", central_widget))
        project_row.addWidget(self.root_edit, 2)
        project_row.addWidget(QLabel("Movie:", central_widget))
        project_row.addWidget(self.movie_edit, 1)
        project_row.addWidget(QLabel("Clip:", central_widget))
        project_row.addWidget(self.clip_edit, 1)
        project_row.addWidget(self.open_button)

        splitter = QSplitter(Qt.Orientation.Horizontal, central_widget)
        self.segment_list = QListWidget(splitter)

        right = QWidget(splitter)
        right_layout = QVBoxLayout(right)
        players_row = QHBoxLayout()
        self.clip_item = QGraphicsVideoItem()
        self.movie_item = QGraphicsVideoItem()
        self.clip_view = self._video_view(self.clip_item, right)
        self.movie_view = self._video_view(self.movie_item, right)
        players_row.addWidget(self.clip_view)
        players_row.addWidget(self.movie_view)

        playback_row = QHBoxLayout()
        self.play_button = QPushButton("Play/Pause", right)
        self.prev_button = QPushButton("Prev", right)
        self.next_button = QPushButton("Next", right)
        self.loop_pair_checkbox = QCheckBox("Loop pair", right)
        self.loop_pair_checkbox.setChecked(self._settings["loop_pair"])
        self.loop_pair_checkbox.setToolTip("Restart both sides together once each reaches its end")
        self.mirror_checkbox = QCheckBox("Mirror clip", right)
        self.mirror_checkbox.setChecked(self._settings["mirror_clip"])
        self.loop_spin = QSpinBox(right)
        self.loop_spin.setRange(config.MIN_LOOP_COUNT, config.MAX_LOOP_COUNT)
        self.loop_spin.setValue(self._settings["loop_count"])
        self.audio_combo = QComboBox(right)
        self.audio_combo.addItems([CLIP, MOVIE])
        self.audio_combo.setCurrentText(self._settings["audio_source"])
        playback_row.addWidget(self.prev_button)
        playback_row.addWidget(self.play_button)
        playback_row.addWidget(self.next_button)
        playback_row.addWidget(self.loop_pair_checkbox)
        playback_row.addWidget(self.mirror_checkbox)
        playback_row.addWidget(QLabel("Loops:", right))
        playback_row.addWidget(self.loop_spin)
        playback_row.addWidget(QLabel("Audio:", right))
        playback_row.addWidget(self.audio_combo)
        playback_row.addStretch()

        review_row = QHBoxLayout()
        self.review_buttons: Dict[str, QPushButton] = {}
        review_row.addWidget(QLabel("Review:", right))
        for status, label in REVIEW_LABELS.items():
            button = QPushButton(label, right)
            self.review_buttons[status] = button
            review_row.addWidget(button)
        review_row.addStretch()

        self.bucket_tabs = QTabWidget(right)
        self.bucket_lists: Dict[str, QListWidget] = {}
        for name in BUCKET_NAMES:
            view = QListWidget(self.bucket_tabs)
            self.bucket_lists[name] = view
            self.bucket_tabs.addTab(view, BUCKET_TITLES[name])

        self.log_view = QTextEdit(right)
        self.log_view.setReadOnly(True)
        self.log_view.setMaximumHeight(120)

        right_layout.addLayout(players_row, 3)
        right_layout.addLayout(playback_row)
        right_layout.addLayout(review_row)
        right_layout.addWidget(self.bucket_tabs, 2)
        right_layout.addWidget(self.log_view)
        splitter.setStretchFactor(0, 1)
        splitter.setStretchFactor(1, 3)

        layout.addLayout(project_row)
        layout.addWidget(splitter)
        self.setCentralWidget(central_widget)
        self.setStatusBar(QStatusBar(self))

    @staticmethod
    def _video_view(item: QGraphicsVideoItem, parent: QWidget) -> QGraphicsView:
        scene = QGraphicsScene(parent)
        scene.addItem(item)
        view = QGraphicsView(scene, parent)
        view.setMinimumSize(320, 180)
        return view

    def _connect_signals(self) -> None:
        self.open_button.clicked.connect(self._handle_open_clicked)
        self.segment_list.currentRowChanged.connect(self._handle_segment_row_changed)
        self.play_button.clicked.connect(self._controller.toggle_play_pause)
        self.prev_button.clicked.connect(lambda: self._submit(self._store.select_adjacent(-1)))
        self.next_button.clicked.connect(lambda: self._submit(self._store.select_adjacent(1)))
        self.loop_pair_checkbox.toggled.connect(self._handle_playback_changed)
        self.mirror_checkbox.toggled.connect(self._handle_playback_changed)
        self.loop_spin.valueChanged.connect(self._handle_playback_changed)
        self.audio_combo.currentTextChanged.connect(self._handle_audio_changed)
        for status, button in self.review_buttons.items():
            button.clicked.connect(lambda _checked=False, value=status: self._handle_review_clicked(value))
        self.bucket_tabs.currentChanged.connect(self._handle_tab_changed)
        for name, view in self.bucket_lists.items():
            view.itemClicked.connect(lambda item, bucket=name: self._handle_candidate_clicked(bucket, item))
            view.itemDoubleClicked.connect(lambda item, bucket=name: self._handle_candidate_applied(bucket, item))

        for key, offset in ((Qt.Key.Key_Up, -1), (Qt.Key.Key_Left, -1), (Qt.Key.Key_Down, 1), (Qt.Key.Key_Right, 1)):
            shortcut = QShortcut(QKeySequence(key), self)
            shortcut.activated.connect(lambda step=offset: self._submit(self._store.select_adjacent(step)))
        QShortcut(QKeySequence(Qt.Key.Key_Space), self).activated.connect(self._controller.toggle_play_pause)

        self._bridge.segments_changed.connect(self._on_segments_changed)
        self._bridge.selection_changed.connect(self._on_selection_changed)
        self._bridge.candidates_changed.connect(self._on_candidates_changed)
        self._bridge.error_raised.connect(lambda message: self.statusBar().showMessage(message, 5000))
        self._bridge.preview_requested.connect(self._on_preview_requested)
        self._log_bridge.record_emitted.connect(self._append_log)

    # ------------------------------------------------------------------
    def _submit(self, coro: Coroutine) -> Future:
        return self._owner.submit(coro)

    def _call_soon(self, fn, *args, **kwargs) -> None:
        self._owner.loop.call_soon_threadsafe(partial(fn, *args, **kwargs))

    def _handle_open_clicked(self) -> None:
        root = self.root_edit.text().strip()
        movie = self.movie_edit.text().strip()
        clip = self.clip_edit.text().strip()
        self._append_log("INFO", f"Opening project {root}")
        self._record_activity("open_project", root=root)
        self._submit(self._store.open_project(root=root, movie=movie, clip=clip))
        self._save_settings()

    def open_url(self, url: str) -> None:
        self._append_log("INFO", f"Opening link {url}")
        self._submit(self._store.open_from_url(url))

    def _handle_segment_row_changed(self, row: int) -> None:
        if self._syncing_selection or not 0 <= row < len(self._annotations):
            return
        self._submit(self._store.select(self._annotations[row].row.seg_id))

    def _handle_playback_changed(self, *_args) -> None:
        self._call_soon(
            self._store.update_playback,
            loop_pair=self.loop_pair_checkbox.isChecked(),
            mirror_clip=self.mirror_checkbox.isChecked(),
            loop_count=self.loop_spin.value(),
        )
        self._apply_mirror(self.mirror_checkbox.isChecked())
        self._save_settings()

    def _handle_audio_changed(self, name: str) -> None:
        self._controller.set_audio_source(name)
        self._call_soon(self._store.update_playback, audio_source=name)
        self._save_settings()

    def _handle_review_clicked(self, status: str) -> None:
        self._record_activity("review", status=status)
        self._submit(self._store.update_review_status(status))

    def _handle_tab_changed(self, index: int) -> None:
        if 0 <= index < len(BUCKET_NAMES):
            self._submit(self._store.set_bucket_mode(BUCKET_NAMES[index]))

    def _candidate_at(self, bucket: str, item: QListWidgetItem) -> Optional[Candidate]:
        row = self.bucket_lists[bucket].row(item)
        items = self._buckets.get(bucket, [])
        return items[row] if 0 <= row < len(items) else None

    def _handle_candidate_clicked(self, bucket: str, item: QListWidgetItem) -> None:
        candidate = self._candidate_at(bucket, item)
        if candidate is not None:
            self._call_soon(self._store.preview_candidate, candidate)

    def _handle_candidate_applied(self, bucket: str, item: QListWidgetItem) -> None:
        candidate = self._candidate_at(bucket, item)
        if candidate is None:
            return
        self._record_activity("apply", candidate=candidate.identity)
        self._submit(self._store.apply_candidate(candidate))

    # ------------------------------------------------------------------
    def _on_segments_changed(self, annotations: List[SegmentAnnotation]) -> None:
        self._annotations = annotations
        self._syncing_selection = True
        try:
            self.segment_list.clear()
            for note in annotations:
                clip = note.row.clip
                flags = ("<" if note.from_prev else " ") + (">" if note.to_next else " ")
                text = f"#{note.row.seg_id}  {format_timestamp(clip.start)} - {format_timestamp(clip.end)}  {flags}"
                if note.spike:
                    text += "  spike"
                status = review_label(note.row.review_status, bool(note.row.review_stale))
                if status:
                    text += f"  [{status}]"
                item = QListWidgetItem(text)
                item.setBackground(QBrush(QColor(island_color(note.island_id))))
                self.segment_list.addItem(item)
        finally:
            self._syncing_selection = False

    def _on_selection_changed(self, seg_id: Optional[int]) -> None:
        for index, note in enumerate(self._annotations):
            if note.row.seg_id == seg_id:
                self._syncing_selection = True
                try:
                    self.segment_list.setCurrentRow(index)
                finally:
                    self._syncing_selection = False
                return

    def _on_candidates_changed(self, payload: dict) -> None:
        self._buckets = payload["buckets"]
        for name, view in self.bucket_lists.items():
            view.clear()
            for candidate, bound in zip(self._buckets.get(name, []), payload["bound"].get(name, [])):
                score = f"  {candidate.score:.3f}" if candidate.score is not None else ""
                marker = "* " if bound else "  "
                view.addItem(
                    f"{marker}{candidate.seg_id if candidate.seg_id is not None else '?'}  "
                    f"{format_timestamp(candidate.start)} - {format_timestamp(candidate.end)}{score}"
                )

    def _on_preview_requested(self, plan: PreviewPlan) -> None:
        self._apply_mirror(plan.mirror)
        try:
            plan.play_on(self._controller)
        except ValueError as error:
            self._append_log("ERROR", f"Preview rejected: {error}")

    def _on_media_error(self, name: str, error: Exception) -> None:
        self._append_log("WARN", f"{name} media unavailable: {error}")

    def _apply_mirror(self, mirror: bool) -> None:
        if mirror:
            width = self.clip_item.size().width()
            self.clip_item.setTransform(QTransform().translate(width, 0).scale(-1, 1))
        else:
            self.clip_item.setTransform(QTransform())

    # ------------------------------------------------------------------
    def _append_log(self, level: str, message: str) -> None:
        timestamp = datetime.now().strftime("%H:%M:%S")
        self.log_view.append(f"{timestamp} {level}: {message}")
        self.statusBar().showMessage(message, 2000)

    def _record_activity(self, action: str, **fields) -> None:
        payload = {"ts": iso_timestamp(), "action": action}
        payload.update(fields)
        append_jsonl(config.ACTIVITY_LOG_PATH, payload, max_lines=2000)

    def _save_settings(self) -> None:
        settings = {
            "project_root": self.root_edit.text().strip(),
            "movie_path": self.movie_edit.text().strip(),
            "clip_path": self.clip_edit.text().strip(),
            "loop_pair": self.loop_pair_checkbox.isChecked(),
            "mirror_clip": self.mirror_checkbox.isChecked(),
            "loop_count": self.loop_spin.value(),
            "audio_source": self.audio_combo.currentText(),
        }
        save_gui_settings(config.SETTINGS_PATH, settings)

    def closeEvent(self, event) -> None:  # type: ignore[override]
        self._timer.stop()
        logging.getLogger("recmatcher").removeHandler(self._log_handler)
        self._controller.stop()
        self._save_settings()
        self._owner.stop()
        self._store.shutdown()
        super().closeEvent(event)


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Recmatcher review client")
    parser.add_argument("--backend", default=config.BACKEND_URL, help="Backend base URL")
    parser.add_argument("url", nargs="?", help="recmatcher:// or file:// link to open on launch")
    args, qt_args = parser.parse_known_args(argv if argv is not None else sys.argv[1:])

    logging.basicConfig(level=config.LOG_LEVEL, format=config.LOG_FORMAT)
    app = QApplication([sys.argv[0], *qt_args])
    window = MainWindow(args.backend)
    window.show()
    if args.url:
        window.open_url(args.url)
    return app.exec()


if __name__ == "__main__":
    sys.exit(main())
