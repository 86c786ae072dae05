"""Qt UI for the node analyzer main window.

Renders the engine's series and forwards mode, band and frequency edits to it.
This module must not talk to the node directly or mutate series.
"""

from typing import Optional

import numpy as np
import pyqtgraph as pg
from pyqtgraph.Qt import QtCore, QtGui, QtWidgets

from rssi_node_analyzer.config import AnalyzerConfig
from rssi_node_analyzer.engine import Engine
from rssi_node_analyzer.errors import ChannelError, ConfigError
from rssi_node_analyzer.persistence import save_state, state_from_config
from rssi_node_analyzer.protocol import (
    EngineErrorFrame,
    EngineFrame,
    EngineFrequencyFrame,
    EngineMonitorFrame,
    EngineSweepFrame,
)
from rssi_node_analyzer.scheduler import AcquisitionState

# Trace colors: live, min, max, rssi, history.
COLORS = {
    "live": (56, 208, 212),
    "min": (90, 140, 255),
    "max": (255, 110, 90),
    "rssi": (56, 208, 212),
    "history": (255, 200, 60),
}
RSSI_RANGE = (0, 150)


class AnalyzerWindow(QtWidgets.QMainWindow):
    """
    Main UI class.
    All node actions go through Engine.
    Series are read through Engine.snapshot() on a redraw timer.
    """

    def __init__(self, cfg: AnalyzerConfig, engine: Engine, state_path: Optional[str] = None):
        super().__init__()
        self.cfg = cfg
        self.engine = engine
        self.state_path = state_path
        self.setWindowTitle("RSSI Node Analyzer")

        pg.setConfigOptions(antialias=False)
        pg.setConfigOption("background", (10, 10, 10))
        pg.setConfigOption("foreground", "w")

        # Written from the acquisition worker, read by the redraw timer.
        self._latest_frequency: Optional[int] = None
        self._latest_rssi: Optional[int] = None
        self._latest_message: Optional[str] = None
        self._last_mode: Optional[AcquisitionState] = None
        self._last_band = None

        self._build_ui()
        self._wire_events()
        self.engine.subscribe(self._on_frame)

        # Redraw at 25 Hz.
        self.ui_timer = QtCore.QTimer()
        self.ui_timer.timeout.connect(self.refresh_display)
        self.ui_timer.start(40)

    def closeEvent(self, event):
        self.ui_timer.stop()
        self.engine.unsubscribe(self._on_frame)
        self.engine.disconnect()
        self._persist_state()
        super().closeEvent(event)

    def _build_ui(self):
        cw = QtWidgets.QWidget()
        self.setCentralWidget(cw)
        layout = QtWidgets.QVBoxLayout(cw)
        layout.setSpacing(6)

        controls = QtWidgets.QGridLayout()
        controls.setHorizontalSpacing(6)
        layout.addLayout(controls)

        self.connect_btn = QtWidgets.QPushButton("Connect")
        self.connect_btn.setCheckable(True)
        controls.addWidget(self.connect_btn, 0, 0)

        self.scan_switch = QtWidgets.QCheckBox("Sweep")
        self.scan_switch.setChecked(self.cfg.sweep_enabled)
        controls.addWidget(self.scan_switch, 0, 1)

        self.fast_switch = QtWidgets.QCheckBox("Fast step")
        self.fast_switch.setChecked(self.cfg.fast_scan)
        controls.addWidget(self.fast_switch, 0, 2)

        controls.addWidget(QtWidgets.QLabel("Band (MHz)"), 0, 3)
        self.min_spin = QtWidgets.QSpinBox()
        self.min_spin.setRange(0, 65535)
        self.min_spin.setValue(self.cfg.min_freq)
        controls.addWidget(self.min_spin, 0, 4)
        self.max_spin = QtWidgets.QSpinBox()
        self.max_spin.setRange(0, 65535)
        self.max_spin.setValue(self.cfg.max_freq)
        controls.addWidget(self.max_spin, 0, 5)
        self.apply_band_btn = QtWidgets.QPushButton("Apply band")
        controls.addWidget(self.apply_band_btn, 0, 6)

        controls.addWidget(QtWidgets.QLabel("Frequency (MHz)"), 0, 7)
        self.freq_edit = QtWidgets.QLineEdit()
        self.freq_edit.setFixedWidth(70)
        self.freq_edit.setAlignment(QtCore.Qt.AlignRight)
        self.freq_edit.setValidator(QtGui.QIntValidator(0, 65535))
        self.freq_edit.setEnabled(not self.cfg.sweep_enabled)
        controls.addWidget(self.freq_edit, 0, 8)

        self.rssi_label = QtWidgets.QLabel("RSSI: -")
        controls.addWidget(self.rssi_label, 0, 9)
        controls.setColumnStretch(10, 1)

        self.plot = pg.PlotWidget()
        self.plot.setLabel("left", "RSSI")
        self.plot.showGrid(x=True, y=True, alpha=0.2)
        self.plot.setYRange(*RSSI_RANGE, padding=0)
        self.plot.setMouseEnabled(x=True, y=False)
        self.plot.addLegend()
        layout.addWidget(self.plot, 1)

        self.curves = {
            name: self.plot.plot([], [], pen=pg.mkPen(color, width=1), name=name.capitalize(), connect="finite")
            for name, color in COLORS.items()
        }
        self.curves["history"].setSymbol("o")
        self.curves["history"].setSymbolSize(5)
        self.curves["history"].setSymbolBrush(COLORS["history"])

        self.msg_label = QtWidgets.QLabel("")
        self.msg_label.setStyleSheet("QLabel { color: #9aa0a6; }")
        layout.addWidget(self.msg_label)

    def _wire_events(self):
        self.connect_btn.toggled.connect(self.on_connect_toggled)
        self.scan_switch.toggled.connect(self.on_scan_switch)
        self.fast_switch.toggled.connect(self.on_fast_switch)
        self.apply_band_btn.clicked.connect(self.on_apply_band)
        self.freq_edit.editingFinished.connect(self.on_frequency_edited)

    def _persist_state(self) -> None:
        try:
            save_state(state_from_config(self.cfg), self.state_path)
        except OSError as exc:
            self.msg_label.setText(f"Could not save settings: {exc}")

    def _guard(self, action) -> bool:
        try:
            action()
        except (ConfigError, ChannelError) as exc:
            self.msg_label.setText(str(exc))
            return False
        return True

    def on_connect_toggled(self, checked: bool) -> None:
        if checked:
            if not self.engine.connect():
                error = self.engine.last_error
                self.msg_label.setText(error.message if error else "Connection failed")
                self.connect_btn.blockSignals(True)
                self.connect_btn.setChecked(False)
                self.connect_btn.blockSignals(False)
                return
            self.connect_btn.setText("Disconnect")
            self.msg_label.setText(f"Connected: {self.engine.status().port}")
            self._persist_state()
        else:
            self.engine.disconnect()
            self.connect_btn.setText("Connect")
            self.msg_label.setText("Disconnected")

    def on_scan_switch(self, checked: bool) -> None:
        self.freq_edit.setEnabled(not checked)
        self._guard(lambda: self.engine.set_sweep_enabled(checked))

    def on_fast_switch(self, checked: bool) -> None:
        self._guard(lambda: self.engine.set_fast_scan(checked))

    def on_apply_band(self) -> None:
        lower, upper = self.min_spin.value(), self.max_spin.value()
        self._guard(lambda: self.engine.set_band(lower, upper))

    def on_frequency_edited(self) -> None:
        text = self.freq_edit.text().strip()
        if not text:
            return
        freq = int(text)
        # Entries outside the band are ignored, matching the band limits.
        if not self.cfg.min_freq <= freq <= self.cfg.max_freq:
            return
        self._guard(lambda: self.engine.set_frequency(freq))

    def _on_frame(self, frame: EngineFrame) -> None:
        if isinstance(frame, EngineSweepFrame):
            self._latest_frequency = frame.frequency
            self._latest_rssi = frame.rssi
        elif isinstance(frame, EngineMonitorFrame):
            self._latest_rssi = frame.rssi
            if frame.frequency is not None:
                self._latest_frequency = frame.frequency
        elif isinstance(frame, EngineFrequencyFrame):
            self._latest_frequency = frame.frequency
        elif isinstance(frame, EngineErrorFrame):
            self._latest_message = frame.message

    def refresh_display(self) -> None:
        if self._latest_message is not None:
            self.msg_label.setText(self._latest_message)
            self._latest_message = None
        if self._latest_frequency is not None and not self.freq_edit.hasFocus():
            self.freq_edit.setText(str(self._latest_frequency))
        if self._latest_rssi is not None:
            self.rssi_label.setText(f"RSSI: {self._latest_rssi}")

        snapshot = self.engine.snapshot()
        if snapshot.mode != self._last_mode or snapshot.band != self._last_band:
            self._configure_axes(snapshot)
        for name, curve in self.curves.items():
            series = snapshot.series.get(name)
            if series is None:
                curve.setData([], [])
            else:
                curve.setData(series.x.astype(np.float64), series.y)
        if snapshot.mode is AcquisitionState.MONITORING and snapshot.window is not None:
            self.plot.setXRange(*snapshot.window, padding=0)

    def _configure_axes(self, snapshot) -> None:
        self._last_mode = snapshot.mode
        self._last_band = snapshot.band
        if snapshot.mode is AcquisitionState.SWEEPING and snapshot.band is not None:
            self.plot.setLabel("bottom", "Frequency", units="MHz")
            self.plot.setXRange(snapshot.band.lower, snapshot.band.upper, padding=0.01)
        elif snapshot.mode is AcquisitionState.MONITORING:
            self.plot.setLabel("bottom", "Time", units="ms")

