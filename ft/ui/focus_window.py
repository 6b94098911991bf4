import sys
from PySide6.QtCore import Qt, QTimer
from PySide6.QtGui import QFont
from PySide6.QtWidgets import (
    QApplication,
    QHBoxLayout,
    QLabel,
    QMainWindow,
    QProgressBar,
    QPushButton,
    QVBoxLayout,
    QWidget,
)
from ft.common.logger import log
from ft.core import config
from ft.core.cache import make_stats_cache, make_timer_cache
from ft.core.projector import format_clock, progress
from ft.core.sync import FocusTimerController
from ft.core.timer_state import COUNTDOWN, COUNTUP
from ft.net.client import QtJsonClient
from ft.net.focus_api import FocusApi

PRESET_MINUTES = (15, 25, 45, 60)


# Wires transport -> api -> caches -> controller from a settings dict. Auth is external: the user id and token
# are whatever the settings (or environment) hand us.
def build_controller(settings, parent=None):
    client = QtJsonClient(
        settings["api_base_url"],
        token_provider=lambda: settings.get("auth_token"),
        timeout_ms=settings["request_timeout_ms"],
        write_timeout_ms=settings["write_timeout_ms"],
        retry_times=settings["retry_times"],
        parent=parent,
    )
    api = FocusApi(client)
    ttl = float(settings["cache_ttl_seconds"])
    return FocusTimerController(
        api,
        make_timer_cache(api, ttl=ttl),
        make_stats_cache(api, ttl=ttl),
        user_provider=lambda: settings.get("user_id"),
        tick_interval_ms=settings["tick_interval_ms"],
        parent=parent,
    )


# ---------------------------------------------------------------------------
# Main window
# ---------------------------------------------------------------------------

# A view over FocusTimerController: everything it shows comes in through the controller's signals.
class FocusWindow(QMainWindow):

    def __init__(self, settings=None):
        super().__init__()
        self.setWindowTitle("Focus Timer")
        self.settings = settings or config.load_settings()
        self.controller = build_controller(self.settings, parent=self)

        central = QWidget()
        self.setCentralWidget(central)
        lay = QVBoxLayout(central)

        # -- Mode switch --
        mode_row = QHBoxLayout()
        self._mode_buttons = {}
        for mode, label in ((COUNTDOWN, "Countdown"), (COUNTUP, "Count up")):
            btn = QPushButton(label)
            btn.setCheckable(True)
            btn.clicked.connect(lambda _checked=False, m=mode: self.controller.switch_mode(m))
            mode_row.addWidget(btn)
            self._mode_buttons[mode] = btn
        lay.addLayout(mode_row)

        # -- Clock --
        self._clock = QLabel("25:00")
        self._clock.setFont(QFont("Calibri", 48, QFont.Bold))
        self._clock.setAlignment(Qt.AlignCenter)
        lay.addWidget(self._clock)
        self._ring = QProgressBar()
        self._ring.setRange(0, 1000)
        self._ring.setTextVisible(False)
        lay.addWidget(self._ring)

        # -- Duration presets --
        preset_row = QHBoxLayout()
        self._duration_buttons = []
        minus = QPushButton("-1")
        minus.clicked.connect(lambda: self.controller.adjust_duration(-1))
        preset_row.addWidget(minus)
        for minutes in PRESET_MINUTES:
            btn = QPushButton(f"{minutes}m")
            btn.clicked.connect(lambda _checked=False, m=minutes: self.controller.set_duration(m))
            preset_row.addWidget(btn)
            self._duration_buttons.append(btn)
        plus = QPushButton("+1")
        plus.clicked.connect(lambda: self.controller.adjust_duration(1))
        preset_row.addWidget(plus)
        self._duration_buttons.extend([minus, plus])
        lay.addLayout(preset_row)

        # -- Controls --
        control_row = QHBoxLayout()
        self._toggle_btn = QPushButton("Start")
        self._toggle_btn.clicked.connect(self.controller.toggle)
        reset_btn = QPushButton("Reset")
        reset_btn.clicked.connect(self.controller.reset)
        control_row.addWidget(self._toggle_btn)
        control_row.addWidget(reset_btn)
        lay.addLayout(control_row)

        # -- Stats, errors, celebration --
        self._stats_lbl = QLabel()
        self._stats_lbl.setAlignment(Qt.AlignCenter)
        lay.addWidget(self._stats_lbl)
        self._error_lbl = QLabel()
        self._error_lbl.setWordWrap(True)
        self._error_lbl.setStyleSheet("color: #b3261e;")
        lay.addWidget(self._error_lbl)
        self._banner = QLabel()
        self._banner.setAlignment(Qt.AlignCenter)
        self._banner.setVisible(False)
        lay.addWidget(self._banner)
        self._banner_timer = QTimer(self)
        self._banner_timer.setSingleShot(True)
        self._banner_timer.timeout.connect(lambda: self._banner.setVisible(False))

        # -- Signals --
        self.controller.state_changed.connect(self._on_state)
        self.controller.display_changed.connect(self._on_display)
        self.controller.stats_changed.connect(self._on_stats)
        self.controller.timer_error_changed.connect(lambda _e: self._refresh_errors())
        self.controller.stats_error_changed.connect(lambda _e: self._refresh_errors())
        self.controller.session_completed.connect(self._on_completed)

        self._on_state(self.controller.state)
        self._on_stats(self.controller.stats)
        self.controller.load()

    def _on_state(self, state):
        for mode, btn in self._mode_buttons.items():
            btn.setChecked(state.mode == mode)
        for btn in self._duration_buttons:
            btn.setEnabled(not state.is_active and state.mode == COUNTDOWN)
        self._toggle_btn.setText("Pause" if state.is_active else "Start")

    def _on_display(self, seconds):
        self._clock.setText(format_clock(seconds))
        self._ring.setValue(int(progress(self.controller.state, seconds) * 1000))

    def _on_stats(self, stats):
        self._stats_lbl.setText(
            f"Today {stats.today_focus_time} min · {stats.today_sessions} sessions · "
            f"streak {stats.streak} · total {stats.total_sessions}"
        )

    def _refresh_errors(self):
        messages = [e.message for e in (self.controller.timer_error, self.controller.stats_error) if e]
        self._error_lbl.setText("\n".join(messages))

    def _on_completed(self, minutes):
        QApplication.beep()
        self._banner.setText(f"Session complete: {minutes} focused minutes")
        self._banner.setVisible(True)
        self._banner_timer.start(int(self.settings["celebrate_ms"]))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main():
    app = QApplication(sys.argv)
    window = FocusWindow()
    window.show()
    log.info("Focus window shown")
    sys.exit(app.exec())
