"""Application entrypoint wiring for the node analyzer.

Parses the command line, configures logging, and creates the Qt application,
engine and main window. This module must not contain UI or node logic beyond
orchestration.
"""

import argparse
import logging
import sys

from pyqtgraph.Qt import QtWidgets

from rssi_node_analyzer.config import AnalyzerConfig
from rssi_node_analyzer.engine import Engine
from rssi_node_analyzer.node.channel import open_serial_channel
from rssi_node_analyzer.node.simulated import SimulatedChannel
from rssi_node_analyzer.persistence import apply_state, load_state
from rssi_node_analyzer.ui.main_window import AnalyzerWindow


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="RSSI sweep and monitor for a timing node")
    parser.add_argument("--port", help="serial port of the node (auto-detected when omitted)")
    parser.add_argument("--simulate", action="store_true", help="use a simulated node instead of hardware")
    parser.add_argument("--log-level", default=None, help="logging level (default INFO)")
    parser.add_argument("--connect", action="store_true", help="connect on startup")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    cfg = apply_state(AnalyzerConfig(), load_state())
    if args.port:
        cfg.port = args.port
    if args.log_level:
        cfg.log_level = args.log_level.upper()
    logging.basicConfig(
        level=getattr(logging, cfg.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    def simulated_channel(node_cfg: AnalyzerConfig) -> SimulatedChannel:
        return SimulatedChannel(frequency=node_cfg.min_freq)

    channel_factory = simulated_channel if args.simulate else open_serial_channel
    engine = Engine(cfg, channel_factory=channel_factory)

    app = QtWidgets.QApplication(sys.argv)
    window = AnalyzerWindow(cfg, engine)
    window.show()
    if args.connect or args.simulate:
        window.connect_btn.setChecked(True)
    return app.exec()


if __name__ == "__main__":
    raise SystemExit(main())
